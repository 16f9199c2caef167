"""Device layer backed by an Intiface/Buttplug server over WebSocket.

Speaks version 3 of the Buttplug message protocol. Every frame is a JSON array of
single-key objects, e.g. ``[{"ScalarCmd": {"Id": 4, ...}}]``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

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
from .hapticlib import params
from .hapticlib.protocol import MotorType

LOGGER = logging.getLogger(__name__)

DEFAULT_URL = "ws://127.0.0.1:12345"
MESSAGE_VERSION = 3
SYSTEM_ID = 0

_COMMAND_ATTRIBUTES = {
    "ScalarCmd": MotorType.SCALAR,
    "RotateCmd": MotorType.ROTATION,
    "LinearCmd": MotorType.LINEAR,
}


class IntifaceError(DeviceLayerError):
    """Raised when the server answers a request with an Error message."""


@dataclass(slots=True, frozen=True)
class RemoteDevice:
    device_index: int
    snapshot: DeviceSnapshot
    battery_sensor: int | None = None
    battery_max: float = 100.0


# --- Message builders --------------------------------------------------------


def request_server_info(msg_id: int, client_name: str) -> dict[str, Any]:
    return {"RequestServerInfo": {"Id": msg_id, "ClientName": client_name, "MessageVersion": MESSAGE_VERSION}}


def request_device_list(msg_id: int) -> dict[str, Any]:
    return {"RequestDeviceList": {"Id": msg_id}}


def start_scanning(msg_id: int) -> dict[str, Any]:
    return {"StartScanning": {"Id": msg_id}}


def ping(msg_id: int) -> dict[str, Any]:
    return {"Ping": {"Id": msg_id}}


def stop_all_devices(msg_id: int) -> dict[str, Any]:
    return {"StopAllDevices": {"Id": msg_id}}


def scalar_cmd(msg_id: int, device_index: int, motor_index: int, value: float, actuator_type: ActuatorType) -> dict[str, Any]:
    return {
        "ScalarCmd": {
            "Id": msg_id,
            "DeviceIndex": device_index,
            "Scalars": [{"Index": motor_index, "Scalar": value, "ActuatorType": actuator_type.value}],
        }
    }


def rotate_cmd(msg_id: int, device_index: int, motor_index: int, speed: float) -> dict[str, Any]:
    return {
        "RotateCmd": {
            "Id": msg_id,
            "DeviceIndex": device_index,
            "Rotations": [{"Index": motor_index, "Speed": abs(speed), "Clockwise": speed >= 0.0}],
        }
    }


def linear_cmd(msg_id: int, device_index: int, motor_index: int, duration_ms: int, position: float) -> dict[str, Any]:
    return {
        "LinearCmd": {
            "Id": msg_id,
            "DeviceIndex": device_index,
            "Vectors": [{"Index": motor_index, "Duration": duration_ms, "Position": position}],
        }
    }


def sensor_read_cmd(msg_id: int, device_index: int, sensor_index: int) -> dict[str, Any]:
    return {
        "SensorReadCmd": {
            "Id": msg_id,
            "DeviceIndex": device_index,
            "SensorIndex": sensor_index,
            "SensorType": "Battery",
        }
    }


def encode(*messages: dict[str, Any]) -> str:
    return json.dumps(list(messages))


def decode(frame: str | bytes) -> list[tuple[str, dict[str, Any]]]:
    """Split a server frame into ``(message_type, body)`` pairs."""

    payload = json.loads(frame)
    if not isinstance(payload, list):
        raise ValueError("Buttplug frames must be JSON arrays")
    messages: list[tuple[str, dict[str, Any]]] = []
    for entry in payload:
        if not isinstance(entry, dict) or len(entry) != 1:
            raise ValueError(f"Malformed Buttplug message: {entry!r}")
        ((message_type, body),) = entry.items()
        messages.append((message_type, body if isinstance(body, dict) else {}))
    return messages


def remote_device_from_info(info: dict[str, Any], device_identifier: str) -> RemoteDevice:
    """Build a :class:`RemoteDevice` from a DeviceAdded/DeviceList entry."""

    attributes = info.get("DeviceMessages") or {}
    motors: list[MotorCapability] = []
    for message_type, motor_type in _COMMAND_ATTRIBUTES.items():
        for index, feature in enumerate(attributes.get(message_type) or []):
            step_count = feature.get("StepCount") or 0
            actuator = ActuatorType.parse(feature.get("ActuatorType"))
            if motor_type is MotorType.ROTATION and not feature.get("ActuatorType"):
                actuator = ActuatorType.ROTATE
            elif motor_type is MotorType.LINEAR and not feature.get("ActuatorType"):
                actuator = ActuatorType.POSITION
            motors.append(
                MotorCapability(
                    motor_type=motor_type,
                    index=index,
                    step_resolution=1.0 / step_count if step_count else 0.0,
                    actuator_type=actuator,
                )
            )

    battery_sensor: int | None = None
    battery_max = 100.0
    for index, sensor in enumerate(attributes.get("SensorReadCmd") or []):
        if sensor.get("SensorType") == "Battery":
            battery_sensor = index
            ranges = sensor.get("SensorRange") or [[0, 100]]
            battery_max = float(ranges[0][1]) or 100.0
            break

    name = info.get("DeviceName", "unknown device")
    snapshot = DeviceSnapshot(
        device_identifier=device_identifier,
        display_name=info.get("DeviceDisplayName") or name,
        motors=tuple(motors),
    )
    return RemoteDevice(
        device_index=int(info["DeviceIndex"]),
        snapshot=snapshot,
        battery_sensor=battery_sensor,
        battery_max=battery_max,
    )


# --- Client ------------------------------------------------------------------


class IntifaceDeviceLayer(DeviceLayer):
    """Buttplug client connected to a running Intiface server."""

    name = "intiface"

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        client_name: str = params.APP_NAME,
        request_timeout: float = 5.0,
        battery_poll_interval: float = 60.0,
    ) -> None:
        super().__init__()
        self._url = url
        self._client_name = client_name
        self._request_timeout = request_timeout
        self._battery_poll_interval = battery_poll_interval
        self._ws: Any = None
        self._ids = itertools.count(1)
        self._outbound: asyncio.Queue[str] = asyncio.Queue()
        self._pending: dict[int, asyncio.Future[tuple[str, dict[str, Any]]]] = {}
        self._devices: dict[int, RemoteDevice] = {}
        self._index_by_identifier: dict[str, int] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._server_name: str | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def server_name(self) -> str | None:
        return self._server_name

    async def connect(self) -> None:
        if self._ws is not None:
            return
        await self._cancel_tasks()
        LOGGER.info("Connecting to Intiface server at %s", self._url)
        try:
            self._ws = await websockets.connect(self._url, open_timeout=self._request_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise DeviceLayerError(f"Failed to connect to {self._url}: {exc}") from exc
        self._outbound = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._reader(), name="intiface-reader"),
            asyncio.create_task(self._writer(), name="intiface-writer"),
        ]
        try:
            _, info = await self._request(request_server_info(self._next_id(), self._client_name))
            self._server_name = info.get("ServerName")
            max_ping_ms = int(info.get("MaxPingTime") or 0)
            LOGGER.info("Connected to %s (max ping %dms)", self._server_name, max_ping_ms)
            if max_ping_ms > 0:
                self._tasks.append(asyncio.create_task(self._pinger(max_ping_ms / 2000.0), name="intiface-ping"))
            _, device_list = await self._request(request_device_list(self._next_id()))
            for info in device_list.get("Devices") or []:
                self._add_device(info)
            await self.start_scanning()
        except DeviceLayerError:
            await self.close()
            raise
        if self._battery_poll_interval > 0:
            self._tasks.append(asyncio.create_task(self._battery_poller(), name="intiface-battery"))

    async def close(self) -> None:
        ws = self._ws
        if ws is not None:
            try:
                self._submit(stop_all_devices(self._next_id()))
                await asyncio.wait_for(self._outbound.join(), timeout=1.0)
            except (DeviceLayerError, asyncio.TimeoutError):
                LOGGER.debug("Outbound queue not flushed before close")
        # tasks outlive a dropped connection until cancelled here
        await self._cancel_tasks()
        if ws is not None:
            await ws.close()
            self._connection_lost()

    async def start_scanning(self) -> None:
        try:
            await self._request(start_scanning(self._next_id()))
        except IntifaceError as exc:
            # already scanning or no comm managers; not fatal
            LOGGER.warning("Could not start scanning: %s", exc)

    def enumerate_devices(self) -> list[DeviceSnapshot]:
        return [device.snapshot for device in self._devices.values()]

    def send_scalar(
        self,
        device_identifier: str,
        motor_index: int,
        value: float,
        actuator_type: ActuatorType = ActuatorType.VIBRATE,
    ) -> None:
        device = self._require_device(device_identifier)
        self._submit(scalar_cmd(self._next_id(), device.device_index, motor_index, value, actuator_type))

    def send_linear(self, device_identifier: str, motor_index: int, duration_ms: int, position: float) -> None:
        device = self._require_device(device_identifier)
        self._submit(linear_cmd(self._next_id(), device.device_index, motor_index, duration_ms, position))

    def send_rotation(self, device_identifier: str, motor_index: int, speed: float) -> None:
        device = self._require_device(device_identifier)
        self._submit(rotate_cmd(self._next_id(), device.device_index, motor_index, speed))

    async def read_battery(self, device_identifier: str) -> float | None:
        device = self._require_device(device_identifier)
        if device.battery_sensor is None:
            return None
        _, reading = await self._request(sensor_read_cmd(self._next_id(), device.device_index, device.battery_sensor))
        data = reading.get("Data") or []
        if not data:
            return None
        return max(0.0, min(1.0, float(data[0]) / device.battery_max))

    # --- internals -----------------------------------------------------------

    def _next_id(self) -> int:
        return next(self._ids)

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        self._tasks = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _require_device(self, device_identifier: str) -> RemoteDevice:
        if self._ws is None:
            raise DeviceLayerError("Not connected to an Intiface server")
        index = self._index_by_identifier.get(device_identifier)
        if index is None:
            raise DeviceLayerError(f"Device {device_identifier!r} is not connected")
        return self._devices[index]

    def _submit(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            raise DeviceLayerError("Not connected to an Intiface server")
        self._outbound.put_nowait(encode(message))

    async def _request(self, message: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        msg_id = next(iter(message.values()))["Id"]
        future: asyncio.Future[tuple[str, dict[str, Any]]] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            self._submit(message)
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise DeviceLayerError(f"Timed out waiting for reply to {next(iter(message))}") from exc
        finally:
            self._pending.pop(msg_id, None)

    def _add_device(self, info: dict[str, Any]) -> None:
        device_index = int(info["DeviceIndex"])
        name = info.get("DeviceName", f"device-{device_index}")
        identifier = name
        owner = self._index_by_identifier.get(identifier)
        if owner is not None and owner != device_index:
            identifier = f"{name}#{device_index}"
        device = remote_device_from_info(info, identifier)
        self._devices[device_index] = device
        self._index_by_identifier[identifier] = device_index
        self._emit(DeviceConnected(device.snapshot))

    def _remove_device(self, device_index: int) -> None:
        device = self._devices.pop(device_index, None)
        if device is None:
            return
        self._index_by_identifier.pop(device.snapshot.device_identifier, None)
        self._emit(DeviceDisconnected(device.snapshot.device_identifier))

    def _handle(self, message_type: str, body: dict[str, Any]) -> None:
        msg_id = body.get("Id", SYSTEM_ID)
        future = self._pending.get(msg_id) if msg_id != SYSTEM_ID else None
        if future is not None and not future.done():
            if message_type == "Error":
                future.set_exception(IntifaceError(body.get("ErrorMessage", "unknown error")))
            else:
                future.set_result((message_type, body))
            return
        if message_type == "DeviceAdded":
            self._add_device(body)
        elif message_type == "DeviceRemoved":
            self._remove_device(int(body.get("DeviceIndex", -1)))
        elif message_type == "ScanningFinished":
            LOGGER.debug("Intiface scanning finished")
        elif message_type == "Error":
            LOGGER.warning("Intiface error for message %s: %s", msg_id, body.get("ErrorMessage"))
        elif message_type != "Ok":
            LOGGER.debug("Ignoring %s message", message_type)

    async def _reader(self) -> None:
        try:
            async for frame in self._ws:
                try:
                    messages = decode(frame)
                except ValueError as exc:
                    LOGGER.warning("Discarding malformed frame from Intiface: %s", exc)
                    continue
                for message_type, body in messages:
                    self._handle(message_type, body)
        except ConnectionClosed as exc:
            LOGGER.warning("Intiface connection closed: %s", exc)
        finally:
            self._connection_lost()

    async def _writer(self) -> None:
        while True:
            frame = await self._outbound.get()
            try:
                if self._ws is not None:
                    await self._ws.send(frame)
            except ConnectionClosed as exc:
                LOGGER.warning("Dropping command, Intiface connection closed: %s", exc)
            finally:
                self._outbound.task_done()

    async def _pinger(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self._submit(ping(self._next_id()))
            except DeviceLayerError:
                return

    async def _battery_poller(self) -> None:
        while True:
            for device in list(self._devices.values()):
                if device.battery_sensor is None:
                    continue
                identifier = device.snapshot.device_identifier
                try:
                    level = await self.read_battery(identifier)
                except DeviceLayerError as exc:
                    LOGGER.debug("Battery read failed for %s: %s", identifier, exc)
                    continue
                self._emit(BatteryUpdated(identifier, level))
            await asyncio.sleep(self._battery_poll_interval)

    def _connection_lost(self) -> None:
        if self._ws is None:
            return
        self._ws = None
        for future in self._pending.values():
            if not future.done():
                future.set_exception(DeviceLayerError("Intiface connection lost"))
        self._pending.clear()
        for device_index in list(self._devices):
            self._remove_device(device_index)


__all__ = [
    "DEFAULT_URL",
    "IntifaceDeviceLayer",
    "IntifaceError",
    "RemoteDevice",
    "decode",
    "encode",
    "linear_cmd",
    "remote_device_from_info",
    "request_server_info",
    "rotate_cmd",
    "scalar_cmd",
    "sensor_read_cmd",
    "stop_all_devices",
]
