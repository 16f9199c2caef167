"""Live view of the devices reported by the device layer."""

from __future__ import annotations

import asyncio
import logging
import threading
from threading import Lock

from .device_layer import (
    BatteryUpdated,
    DeviceConnected,
    DeviceDisconnected,
    DeviceEvent,
    DeviceSnapshot,
)

LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    """Merge device events into snapshots readable from any task.

    Backends call :meth:`publish` from their own callbacks; the events are
    queued and merged by :meth:`run` so a slow callback never sits in the
    command path.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._devices: dict[str, DeviceSnapshot] = {}
        self._queue: asyncio.Queue[DeviceEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: int | None = None

    def publish(self, event: DeviceEvent) -> None:
        """Queue *event* for merging. Safe to call from any thread."""

        loop = self._loop
        if loop is None or loop.is_closed():
            # no pump running yet: merge inline
            self.apply(event)
            return
        if threading.get_ident() == self._loop_thread:
            self._queue.put_nowait(event)
        else:
            loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def run(self) -> None:
        """Drain the event queue until cancelled."""

        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        try:
            while True:
                event = await self._queue.get()
                try:
                    self.apply(event)
                finally:
                    self._queue.task_done()
        finally:
            self._loop = None
            self._loop_thread = None

    async def drain(self) -> None:
        """Wait until every queued event has been merged."""

        await self._queue.join()

    def apply(self, event: DeviceEvent) -> None:
        with self._lock:
            if isinstance(event, DeviceConnected):
                snapshot = event.snapshot
                self._devices[snapshot.device_identifier] = snapshot
                LOGGER.info("Device connected: %s (%s)", snapshot.display_name, snapshot.device_identifier)
            elif isinstance(event, DeviceDisconnected):
                snapshot = self._devices.get(event.device_identifier)
                if snapshot is None:
                    LOGGER.debug("Disconnect for unknown device %s", event.device_identifier)
                    return
                self._devices[event.device_identifier] = snapshot.disconnected()
                LOGGER.info("Device disconnected: %s", snapshot.display_name)
            elif isinstance(event, BatteryUpdated):
                snapshot = self._devices.get(event.device_identifier)
                if snapshot is None:
                    return
                self._devices[event.device_identifier] = snapshot.with_battery(event.level)

    def devices(self) -> tuple[DeviceSnapshot, ...]:
        with self._lock:
            return tuple(self._devices.values())

    def connected_devices(self) -> tuple[DeviceSnapshot, ...]:
        return tuple(device for device in self.devices() if device.connected)

    def get(self, device_identifier: str) -> DeviceSnapshot | None:
        with self._lock:
            return self._devices.get(device_identifier)


__all__ = ["DeviceRegistry"]
