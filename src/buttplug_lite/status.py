"""Plain-text status projections served over HTTP."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .configuration import Configuration
from .hapticlib import params
from .hapticlib.protocol import MotorType
from .registry import DeviceRegistry


def app_version() -> str:
    try:
        return version(params.DIST_NAME)
    except PackageNotFoundError:
        return "0.0.0+unknown"


def version_string() -> str:
    """Return ``<app-name> <version>``."""

    return f"{params.APP_NAME} {app_version()}"


def haptic_status(registry: DeviceRegistry, *, device_layer_connected: bool | None) -> str:
    """Human-readable summary of the device server and its devices.

    The layout is informational only and may change between releases.
    """

    running = "None" if device_layer_connected is None else str(device_layer_connected).lower()
    lines = [f"device server running={running}"]
    for device in sorted(registry.devices(), key=lambda snapshot: snapshot.display_name):
        header = f"  {device.display_name}"
        if device.display_name != device.device_identifier:
            header += f" [{device.device_identifier}]"
        if not device.connected:
            header += " (disconnected)"
        lines.append(header)
        for motor_type in (MotorType.SCALAR, MotorType.ROTATION, MotorType.LINEAR):
            for motor in device.motors_of(motor_type):
                lines.append(
                    f"    {motor_type}#{motor.index}: actuator={motor.actuator_type} "
                    f"step={motor.step_resolution:g}"
                )
    return "\n".join(lines)


def device_config(configuration: Configuration) -> str:
    """One ``<tag>;<device_name>;<motor_type>`` line per configured tag."""

    return "".join(f"{motor.tag};{motor.device_name};{motor.motor_type}\n" for motor in configuration)


def battery_status(registry: DeviceRegistry) -> str:
    """One ``<device_name>:<level>`` line per connected device; ``-1`` when unknown."""

    lines = []
    for device in registry.connected_devices():
        level = params.BATTERY_UNKNOWN if device.battery_level is None else device.battery_level
        lines.append(f"{device.display_name}:{level}\n")
    return "".join(lines)


__all__ = ["app_version", "battery_status", "device_config", "haptic_status", "version_string"]
