"""Per-tag activity tracking and the inactivity watchdog."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from threading import Lock
from time import monotonic
from typing import Callable

from .configuration import Configuration, MotorAddress
from .device_layer import DeviceLayer, DeviceLayerError
from .hapticlib import params
from .hapticlib.protocol import MotorType, ResolvedVariant, stop_variant, variant_value

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]

# linear motors hold their last position, nothing to stop
TIMED_MOTOR_TYPES = frozenset({MotorType.SCALAR, MotorType.ROTATION})


class ActivityState(str, Enum):
    ACTIVE = "active"
    QUIESCED = "quiesced"


@dataclass(slots=True, frozen=True)
class MotorActivity:
    address: MotorAddress
    last_timestamp: float
    last_value: tuple[float, ...]
    state: ActivityState = ActivityState.ACTIVE

    @property
    def tag(self) -> str:
        return self.address.tag

    def idle_for(self, now: float) -> float:
        return max(0.0, now - self.last_timestamp)


class ActivityTracker:
    """Last command time and value for every tag commanded in this generation."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, MotorActivity] = {}

    def record(self, address: MotorAddress, variant: ResolvedVariant, now: float) -> MotorActivity:
        activity = MotorActivity(
            address=address,
            last_timestamp=now,
            last_value=variant_value(variant),
        )
        with self._lock:
            self._entries[address.tag] = activity
        return activity

    def reset(self, _configuration: Configuration | None = None) -> None:
        """Forget every entry. Installed as a configuration listener."""

        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        if count:
            LOGGER.debug("Cleared activity for %d tags", count)

    def get(self, tag: str) -> MotorActivity | None:
        with self._lock:
            return self._entries.get(tag)

    def entries(self) -> list[MotorActivity]:
        with self._lock:
            return list(self._entries.values())

    def active(self) -> list[MotorActivity]:
        return [entry for entry in self.entries() if entry.state is ActivityState.ACTIVE]

    def expired(self, now: float, threshold: float) -> list[MotorActivity]:
        """Quiesce and return timed motors idle for at least *threshold* seconds.

        An entry is returned once; it stays quiesced until the next
        :meth:`record` for its tag. When several tags drive the same motor,
        only the most recently commanded one can expire it; older tags are
        quiesced without being returned.
        """

        expired: list[MotorActivity] = []
        with self._lock:
            latest: dict[tuple[str, MotorType, int], float] = {}
            for entry in self._entries.values():
                if entry.state is ActivityState.ACTIVE:
                    key = entry.address.physical_key
                    latest[key] = max(latest.get(key, entry.last_timestamp), entry.last_timestamp)
            for tag, entry in self._entries.items():
                if entry.state is not ActivityState.ACTIVE:
                    continue
                if entry.address.motor_type not in TIMED_MOTOR_TYPES:
                    continue
                if now - entry.last_timestamp >= threshold:
                    quiesced = replace(entry, state=ActivityState.QUIESCED)
                    self._entries[tag] = quiesced
                    if latest[entry.address.physical_key] > entry.last_timestamp:
                        LOGGER.debug("Tag %s idle but %s is still driven by another tag", tag, entry.address.describe())
                        continue
                    expired.append(quiesced)
        return expired

    def quiesce_all(self) -> list[MotorActivity]:
        """Quiesce and return every active timed motor."""

        quiesced: list[MotorActivity] = []
        with self._lock:
            for tag, entry in self._entries.items():
                if entry.state is ActivityState.ACTIVE and entry.address.motor_type in TIMED_MOTOR_TYPES:
                    self._entries[tag] = replace(entry, state=ActivityState.QUIESCED)
                    quiesced.append(self._entries[tag])
        return quiesced

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def send_stop(device_layer: DeviceLayer, address: MotorAddress) -> bool:
    """Send the halt command for *address*; returns False if the device layer refused it."""

    variant = stop_variant(address.motor_type)
    if variant is None:
        return False
    try:
        if address.motor_type is MotorType.SCALAR:
            device_layer.send_scalar(address.device_identifier, address.motor_index, 0.0, address.actuator_type)
        else:
            device_layer.send_rotation(address.device_identifier, address.motor_index, 0.0)
    except DeviceLayerError as exc:
        LOGGER.warning("watchdog: error halting %s: %s", address.describe(), exc)
        return False
    return True


class Watchdog:
    """Stop scalar and rotation motors that stopped receiving commands."""

    def __init__(
        self,
        activity: ActivityTracker,
        device_layer: DeviceLayer,
        *,
        threshold: float = params.WATCHDOG_TIMEOUT_S,
        tick: float = params.WATCHDOG_TICK_S,
        clock: Clock = monotonic,
    ) -> None:
        if tick <= 0:
            raise ValueError("tick must be positive")
        self._activity = activity
        self._device_layer = device_layer
        self.threshold = threshold
        self.tick = tick
        self._clock = clock

    def check(self, now: float | None = None) -> list[MotorActivity]:
        """Run one watchdog pass and return the motors it stopped."""

        now = self._clock() if now is None else now
        expired = self._activity.expired(now, self.threshold)
        for entry in expired:
            LOGGER.info(
                "Watchdog violation for tag %s after %.1fs idle; halting %s. "
                "Send an update at least every %.0fms to avoid this.",
                entry.tag,
                entry.idle_for(now),
                entry.address.describe(),
                self.threshold * 1000,
            )
            send_stop(self._device_layer, entry.address)
        return expired

    def stop_all_active(self) -> list[MotorActivity]:
        """Best-effort halt of every motor still marked active."""

        stopped = self._activity.quiesce_all()
        for entry in stopped:
            send_stop(self._device_layer, entry.address)
        if stopped:
            LOGGER.info("Halted %d active motors", len(stopped))
        return stopped

    async def run(self) -> None:
        LOGGER.debug("Watchdog started (threshold=%.1fs tick=%.1fs)", self.threshold, self.tick)
        while True:
            await asyncio.sleep(self.tick)
            self.check()


__all__ = [
    "ActivityState",
    "ActivityTracker",
    "MotorActivity",
    "TIMED_MOTOR_TYPES",
    "Watchdog",
    "send_stop",
]
