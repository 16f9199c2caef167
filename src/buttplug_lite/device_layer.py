"""Device layer boundary shared by every backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Callable, Iterable, Union

from .configuration import ActuatorType
from .hapticlib.protocol import MotorType

LOGGER = logging.getLogger(__name__)


class DeviceLayerError(RuntimeError):
    """Raised when a device command cannot be submitted."""


@dataclass(slots=True, frozen=True)
class MotorCapability:
    motor_type: MotorType
    index: int
    step_resolution: float = 0.05
    actuator_type: ActuatorType = ActuatorType.VIBRATE


@dataclass(slots=True, frozen=True)
class DeviceSnapshot:
    """Point-in-time view of a device as reported by the device layer."""

    device_identifier: str
    display_name: str
    motors: tuple[MotorCapability, ...] = ()
    battery_level: float | None = None
    connected: bool = True

    def with_battery(self, level: float | None) -> "DeviceSnapshot":
        return replace(self, battery_level=level)

    def disconnected(self) -> "DeviceSnapshot":
        return replace(self, connected=False)

    def motors_of(self, motor_type: MotorType) -> list[MotorCapability]:
        return [motor for motor in self.motors if motor.motor_type is motor_type]


@dataclass(slots=True, frozen=True)
class DeviceConnected:
    snapshot: DeviceSnapshot


@dataclass(slots=True, frozen=True)
class DeviceDisconnected:
    device_identifier: str


@dataclass(slots=True, frozen=True)
class BatteryUpdated:
    device_identifier: str
    level: float | None


DeviceEvent = Union[DeviceConnected, DeviceDisconnected, BatteryUpdated]
EventCallback = Callable[[DeviceEvent], None]


@dataclass(slots=True)
class _Listeners:
    """Fan device events out to registered callbacks."""

    _callbacks: list[EventCallback] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock)

    def register(self, callback: EventCallback) -> None:
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)

    def unregister(self, callback: EventCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def dispatch(self, event: DeviceEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:  # pragma: no cover - listener bugs must not kill the transport
                LOGGER.exception("Device event listener raised")


class DeviceLayer:
    """Base class for device backends.

    ``send_*`` submit a command and return immediately; they raise
    :class:`DeviceLayerError` when the target device is unknown or the
    transport is down. Connect, disconnect and battery changes are reported to
    listeners registered with :meth:`register_listener`.
    """

    name = "device-layer"

    def __init__(self) -> None:
        self._listeners = _Listeners()

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    async def connect(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def start_scanning(self) -> None:
        """Ask the backend to look for new devices."""

    def enumerate_devices(self) -> list[DeviceSnapshot]:
        raise NotImplementedError

    def send_scalar(
        self,
        device_identifier: str,
        motor_index: int,
        value: float,
        actuator_type: ActuatorType = ActuatorType.VIBRATE,
    ) -> None:
        raise NotImplementedError

    def send_linear(self, device_identifier: str, motor_index: int, duration_ms: int, position: float) -> None:
        raise NotImplementedError

    def send_rotation(self, device_identifier: str, motor_index: int, speed: float) -> None:
        raise NotImplementedError

    def register_listener(self, callback: EventCallback) -> None:
        self._listeners.register(callback)

    def unregister_listener(self, callback: EventCallback) -> None:
        self._listeners.unregister(callback)

    def _emit(self, event: DeviceEvent) -> None:
        self._listeners.dispatch(event)

    def _emit_all(self, events: Iterable[DeviceEvent]) -> None:
        for event in events:
            self._emit(event)


__all__ = [
    "BatteryUpdated",
    "DeviceConnected",
    "DeviceDisconnected",
    "DeviceEvent",
    "DeviceLayer",
    "DeviceLayerError",
    "DeviceSnapshot",
    "EventCallback",
    "MotorCapability",
]
