"""Combine configured tags with the motors devices currently expose."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .configuration import Configuration, MotorAddress
from .device_layer import DeviceSnapshot
from .registry import DeviceRegistry


@dataclass(slots=True, frozen=True)
class TaggedMotor:
    """A motor row for the configuration UI; ``tag`` is None when untagged."""

    address: MotorAddress
    tag: str | None
    connected: bool

    @property
    def key(self) -> str:
        identifier, motor_type, index = self.address.physical_key
        return f"{identifier}|{motor_type}|{index}"

    def sort_key(self) -> tuple[str, str, int, str]:
        return (self.address.device_name, str(self.address.motor_type), self.address.motor_index, self.tag or "")


def motors_from_device(device: DeviceSnapshot) -> list[MotorAddress]:
    """Untagged addresses for every motor *device* exposes."""

    return [
        MotorAddress(
            tag="",
            device_name=device.display_name,
            device_identifier=device.device_identifier,
            motor_index=motor.index,
            motor_type=motor.motor_type,
            actuator_type=motor.actuator_type,
        )
        for motor in device.motors
    ]


def list_motors(devices: Iterable[DeviceSnapshot], configuration: Configuration) -> list[TaggedMotor]:
    """Return configured tags plus every connected motor that has no tag, sorted."""

    device_list = [device for device in devices if device.connected]
    connected = {device.device_identifier for device in device_list}
    tagged = [
        TaggedMotor(address=motor, tag=motor.tag, connected=motor.device_identifier in connected)
        for motor in configuration
    ]
    claimed = {motor.address.physical_key for motor in tagged}
    untagged: list[TaggedMotor] = []
    for device in device_list:
        for address in motors_from_device(device):
            if address.physical_key in claimed:
                continue
            claimed.add(address.physical_key)
            untagged.append(TaggedMotor(address=address, tag=None, connected=True))
    return sorted(tagged + untagged, key=TaggedMotor.sort_key)


def list_registry_motors(registry: DeviceRegistry, configuration: Configuration) -> list[TaggedMotor]:
    return list_motors(registry.devices(), configuration)


__all__ = ["TaggedMotor", "list_motors", "list_registry_motors", "motors_from_device"]
