"""In-process device layer with virtual devices."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Iterable

from .configuration import ActuatorType
from .device_layer import (
    BatteryUpdated,
    DeviceConnected,
    DeviceDisconnected,
    DeviceLayer,
    DeviceLayerError,
    DeviceSnapshot,
    MotorCapability,
)
from .hapticlib.protocol import MotorType

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SentCommand:
    """One command accepted by :class:`SimulatedDeviceLayer`."""

    device_identifier: str
    motor_type: MotorType
    motor_index: int
    values: tuple[float, ...]


def default_devices() -> list[DeviceSnapshot]:
    return [
        DeviceSnapshot(
            device_identifier="simulated://edge",
            display_name="Lovense Edge",
            motors=(
                MotorCapability(MotorType.SCALAR, 0, 0.05, ActuatorType.VIBRATE),
                MotorCapability(MotorType.SCALAR, 1, 0.05, ActuatorType.VIBRATE),
            ),
            battery_level=0.8,
        ),
        DeviceSnapshot(
            device_identifier="simulated://cyclone",
            display_name="Vorze A10 Cyclone SA",
            motors=(MotorCapability(MotorType.ROTATION, 0, 0.01, ActuatorType.ROTATE),),
        ),
        DeviceSnapshot(
            device_identifier="simulated://keon",
            display_name="Kiiroo Keon",
            motors=(MotorCapability(MotorType.LINEAR, 0, 0.01, ActuatorType.POSITION),),
            battery_level=0.55,
        ),
    ]


class SimulatedDeviceLayer(DeviceLayer):
    """Virtual devices that log and record every command they receive."""

    name = "simulated"

    def __init__(self, devices: Iterable[DeviceSnapshot] | None = None) -> None:
        super().__init__()
        self._lock = Lock()
        initial = list(default_devices() if devices is None else devices)
        self._devices: dict[str, DeviceSnapshot] = {device.device_identifier: device for device in initial}
        self._connected = False
        self.sent: list[SentCommand] = []

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        LOGGER.info("Simulated device layer started with %d devices", len(self._devices))
        self._emit_all(DeviceConnected(device) for device in self.enumerate_devices())

    async def close(self) -> None:
        self._connected = False

    async def start_scanning(self) -> None:
        LOGGER.debug("Simulated scan requested")
        self._emit_all(DeviceConnected(device) for device in self.enumerate_devices())

    def enumerate_devices(self) -> list[DeviceSnapshot]:
        with self._lock:
            return [device for device in self._devices.values() if device.connected]

    def disconnect_device(self, device_identifier: str) -> None:
        device = self._require_known(device_identifier)
        with self._lock:
            self._devices[device_identifier] = device.disconnected()
        self._emit(DeviceDisconnected(device_identifier))

    def reconnect_device(self, device_identifier: str) -> None:
        device = self._require_known(device_identifier)
        restored = DeviceSnapshot(
            device_identifier=device.device_identifier,
            display_name=device.display_name,
            motors=device.motors,
            battery_level=device.battery_level,
        )
        with self._lock:
            self._devices[device_identifier] = restored
        self._emit(DeviceConnected(restored))

    def set_battery(self, device_identifier: str, level: float | None) -> None:
        device = self._require_known(device_identifier)
        with self._lock:
            self._devices[device_identifier] = device.with_battery(level)
        self._emit(BatteryUpdated(device_identifier, level))

    def send_scalar(
        self,
        device_identifier: str,
        motor_index: int,
        value: float,
        actuator_type: ActuatorType = ActuatorType.VIBRATE,
    ) -> None:
        self._record(device_identifier, MotorType.SCALAR, motor_index, (value,))

    def send_linear(self, device_identifier: str, motor_index: int, duration_ms: int, position: float) -> None:
        self._record(device_identifier, MotorType.LINEAR, motor_index, (float(duration_ms), position))

    def send_rotation(self, device_identifier: str, motor_index: int, speed: float) -> None:
        self._record(device_identifier, MotorType.ROTATION, motor_index, (speed,))

    def commands_for(self, device_identifier: str) -> list[SentCommand]:
        with self._lock:
            return [command for command in self.sent if command.device_identifier == device_identifier]

    def _require_known(self, device_identifier: str) -> DeviceSnapshot:
        with self._lock:
            device = self._devices.get(device_identifier)
        if device is None:
            raise DeviceLayerError(f"Unknown device {device_identifier!r}")
        return device

    def _record(self, device_identifier: str, motor_type: MotorType, motor_index: int, values: tuple[float, ...]) -> None:
        if not self._connected:
            raise DeviceLayerError("Simulated device layer is not running")
        device = self._require_known(device_identifier)
        if not device.connected:
            raise DeviceLayerError(f"Device {device.display_name} is disconnected")
        if not any(motor.index == motor_index for motor in device.motors_of(motor_type)):
            raise DeviceLayerError(f"Device {device.display_name} has no {motor_type} motor #{motor_index}")
        command = SentCommand(device_identifier, motor_type, motor_index, values)
        with self._lock:
            self.sent.append(command)
        LOGGER.debug("%s %s#%d <- %s", device.display_name, motor_type, motor_index, values)


__all__ = ["SentCommand", "SimulatedDeviceLayer", "default_devices"]
