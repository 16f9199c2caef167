"""Persistence helpers for the tag configuration."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import yaml

from .configuration import ActuatorType, Configuration, ConfigurationError, MotorAddress
from .hapticlib import params
from .hapticlib.protocol import MotorType

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path("~/.config/buttplug_lite").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"

# version 2 motor types
_LEGACY_TYPES = {
    "Linear": (MotorType.LINEAR, ActuatorType.POSITION),
    "Rotation": (MotorType.ROTATION, ActuatorType.ROTATE),
    "Vibration": (MotorType.SCALAR, ActuatorType.VIBRATE),
}


def backup_path(config_path: Path, version: int) -> Path:
    return config_path.with_name(f"backup_config_v{version}.yaml")


def motor_to_dict(motor: MotorAddress) -> dict[str, Any]:
    feature_type: dict[str, Any] = {"type": motor.motor_type.name.title()}
    if motor.motor_type is MotorType.SCALAR:
        feature_type["actuator_type"] = motor.actuator_type.value
    return {
        "device_name": motor.device_name,
        "device_identifier": motor.device_identifier,
        "feature_index": motor.motor_index,
        "feature_type": feature_type,
    }


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigurationError(f"{what} must be a mapping, not {type(value).__name__}")
    return value


def motor_from_dict(tag: str, data: dict[str, Any]) -> MotorAddress:
    data = _mapping(data, f"tag {tag!r}")
    feature_type = data.get("feature_type") or {}
    if isinstance(feature_type, str):
        feature_type = {"type": feature_type}
    feature_type = _mapping(feature_type, f"feature_type of tag {tag!r}")
    motor_type = MotorType.parse(str(feature_type.get("type", "")))
    actuator = ActuatorType.parse(feature_type.get("actuator_type"))
    if motor_type is MotorType.ROTATION:
        actuator = ActuatorType.ROTATE
    elif motor_type is MotorType.LINEAR:
        actuator = ActuatorType.POSITION
    return MotorAddress(
        tag=str(tag),
        device_name=str(data["device_name"]),
        device_identifier=str(data.get("device_identifier") or ""),
        motor_index=int(data.get("feature_index", 0)),
        motor_type=motor_type,
        actuator_type=actuator,
    )


def config_to_dict(config: Configuration) -> dict[str, Any]:
    """Serialize *config* to primitive types for YAML dumping."""

    return {
        "version": params.CONFIG_VERSION,
        "port": config.port,
        "tags": {motor.tag: motor_to_dict(motor) for motor in config},
    }


def config_from_dict(data: dict[str, Any]) -> Configuration:
    version = int(data.get("version", 1))
    if version < params.CONFIG_VERSION:
        data = migrate_v2(data)
    tags = _mapping(data.get("tags") or {}, "tags")
    motors = [motor_from_dict(tag, motor) for tag, motor in tags.items()]
    return Configuration(port=int(data.get("port", params.DEFAULT_PORT)), motors=tuple(motors))


def migrate_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a version 1/2 document to the current layout.

    Devices that had a contraction motor are dropped entirely since none of
    their motors can be mapped safely.
    """

    tags = _mapping(data.get("tags") or {}, "tags")
    for tag, motor in tags.items():
        _mapping(motor, f"tag {tag!r}")
    bad_devices = {
        motor.get("device_name")
        for motor in tags.values()
        if motor.get("feature_type") == "Contraction"
    }
    migrated: dict[str, Any] = {}
    for tag, motor in tags.items():
        if motor.get("device_name") in bad_devices:
            continue
        legacy = _LEGACY_TYPES.get(motor.get("feature_type"))
        if legacy is None:
            continue
        motor_type, actuator = legacy
        feature_type: dict[str, Any] = {"type": motor_type.name.title()}
        if motor_type is MotorType.SCALAR:
            feature_type["actuator_type"] = actuator.value
        migrated[tag] = {
            "device_name": motor["device_name"],
            "feature_index": motor.get("feature_index", 0),
            "feature_type": feature_type,
        }
    return {"version": params.CONFIG_VERSION, "port": data.get("port", params.DEFAULT_PORT), "tags": migrated}


def load_config(path: Path | None = None) -> Configuration:
    """Load configuration from *path* or fall back to the default location.

    A document that cannot be read is copied aside and replaced by the default
    configuration; older versions are backed up before migrating.
    """

    config_path = path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        # Ensure parent directory exists so saves succeed later.
        config_path.parent.mkdir(parents=True, exist_ok=True)
        LOGGER.info("No configuration at %s, using defaults", config_path)
        return Configuration()

    LOGGER.info("Loading configuration from %s", config_path)
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ConfigurationError("configuration document must be a mapping")
        version = int(data.get("version", 1))
    except (OSError, yaml.YAMLError, ConfigurationError, TypeError, ValueError) as exc:
        shutil.copyfile(config_path, backup_path(config_path, 0))
        LOGGER.warning("Falling back to default config due to error: %s", exc)
        return Configuration()

    if version < params.CONFIG_VERSION:
        shutil.copyfile(config_path, backup_path(config_path, version))
        LOGGER.info("Converting v%d config to v%d", version, params.CONFIG_VERSION)
    try:
        config = config_from_dict(data)
    except (ConfigurationError, KeyError, TypeError, ValueError) as exc:
        shutil.copyfile(config_path, backup_path(config_path, version))
        LOGGER.warning("Falling back to default config due to error: %s", exc)
        return Configuration()

    if version < params.CONFIG_VERSION:
        try:
            save_config(config, config_path)
        except OSError as exc:
            LOGGER.warning("Error saving migrated configuration: %s", exc)
    return config


def save_config(config: Configuration, path: Path | None = None) -> None:
    """Persist *config* as YAML to *path* (defaulting to the standard location)."""

    config_path = path or DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_to_dict(config), handle, sort_keys=False)


__all__ = [
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_PATH",
    "backup_path",
    "config_from_dict",
    "config_to_dict",
    "load_config",
    "migrate_v2",
    "save_config",
]
