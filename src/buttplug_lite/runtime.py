"""Shared state handles and their lifecycle."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from time import monotonic
from typing import Callable

from .configuration import Configuration, ConfigurationTable
from .controllers import CommandRouter
from .device_layer import DeviceLayer, DeviceLayerError
from .hapticlib import params
from .persistence import save_config
from .registry import DeviceRegistry
from .watchdog import ActivityTracker, Watchdog, send_stop

LOGGER = logging.getLogger(__name__)

PortListener = Callable[[int], None]


class HapticRuntime:
    """Owns the configuration table, device registry, activity and watchdog.

    Every component receives the handles it needs from here; nothing is kept
    in module globals.
    """

    def __init__(
        self,
        device_layer: DeviceLayer,
        configuration: Configuration | None = None,
        *,
        config_path: Path | None = None,
        watchdog_timeout: float = params.WATCHDOG_TIMEOUT_S,
        watchdog_tick: float = params.WATCHDOG_TICK_S,
        reconnect_delay: float = params.DEVICE_RECONNECT_DELAY_S,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.device_layer = device_layer
        self.config_path = config_path
        self.reconnect_delay = reconnect_delay
        self.table = ConfigurationTable(configuration)
        self.registry = DeviceRegistry()
        self.activity = ActivityTracker()
        self.router = CommandRouter(self.table, device_layer, self.activity, clock=clock)
        self.watchdog = Watchdog(
            self.activity,
            device_layer,
            threshold=watchdog_timeout,
            tick=watchdog_tick,
            clock=clock,
        )
        self.table.add_listener(self.activity.reset)
        self.table.add_listener(self._notify_port)
        self.device_layer.register_listener(self.registry.publish)
        self._port_listeners: list[PortListener] = []
        self._port = self.table.current().port
        self._tasks: list[asyncio.Task[None]] = []
        self._supervisor: asyncio.Task[None] | None = None

    @property
    def configuration(self) -> Configuration:
        return self.table.current()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def add_port_listener(self, listener: PortListener) -> None:
        self._port_listeners.append(listener)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self.registry.run(), name="device-registry"),
            asyncio.create_task(self.watchdog.run(), name="watchdog"),
        ]
        await self._connect_device_layer()
        self._supervisor = asyncio.create_task(self._supervise_device_layer(), name="device-layer-supervisor")

    async def stop(self) -> None:
        if self._supervisor is not None:
            self._supervisor.cancel()
            await asyncio.gather(self._supervisor, return_exceptions=True)
            self._supervisor = None
        self.watchdog.stop_all_active()
        try:
            await self.device_layer.close()
        except DeviceLayerError as exc:
            LOGGER.warning("Error closing device layer: %s", exc)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def emergency_stop(self) -> int:
        """Halt every configured scalar and rotation motor on a connected device."""

        self.activity.quiesce_all()
        halted = 0
        for address in self.configuration:
            device = self.registry.get(address.device_identifier)
            if device is None or not device.connected:
                continue
            if send_stop(self.device_layer, address):
                halted += 1
        LOGGER.warning("Emergency stop: halted %d motors", halted)
        return halted

    def apply_configuration(self, configuration: Configuration, *, persist: bool = True) -> int:
        """Install *configuration*, optionally saving it to disk first."""

        if persist:
            save_config(configuration, self.config_path)
        return self.table.install(configuration)

    async def _connect_device_layer(self) -> None:
        try:
            await self.device_layer.connect()
        except DeviceLayerError as exc:
            # keep serving; status reports the device server as down
            LOGGER.error(
                "Device layer %s unavailable: %s. Retrying in %.0fs",
                self.device_layer.name,
                exc,
                self.reconnect_delay,
            )

    async def _supervise_device_layer(self) -> None:
        """Reconnect the device layer whenever its connection drops."""

        while True:
            await asyncio.sleep(self.reconnect_delay)
            if self.device_layer.connected:
                continue
            LOGGER.info("Reconnecting to device layer %s", self.device_layer.name)
            await self._connect_device_layer()

    def _notify_port(self, configuration: Configuration) -> None:
        if configuration.port == self._port:
            return
        LOGGER.info("Port changed from %d to %d", self._port, configuration.port)
        self._port = configuration.port
        for listener in list(self._port_listeners):
            listener(configuration.port)


__all__ = ["HapticRuntime"]
