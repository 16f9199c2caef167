"""Tag to motor mapping and the table holding the active generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping

from .hapticlib import params
from .hapticlib.protocol import MotorType

LOGGER = logging.getLogger(__name__)

InstallListener = Callable[["Configuration"], None]


class ConfigurationError(ValueError):
    """Raised when a configuration violates its invariants."""


class ActuatorType(str, Enum):
    """Actuator driven by a scalar motor."""

    VIBRATE = "Vibrate"
    ROTATE = "Rotate"
    OSCILLATE = "Oscillate"
    CONSTRICT = "Constrict"
    INFLATE = "Inflate"
    POSITION = "Position"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, value: str | None) -> "ActuatorType":
        if not value:
            return cls.VIBRATE
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        return cls.UNKNOWN


@dataclass(slots=True, frozen=True)
class MotorAddress:
    """Where a tag points: one motor on one device."""

    tag: str
    device_name: str
    motor_index: int
    motor_type: MotorType
    device_identifier: str = ""
    actuator_type: ActuatorType = ActuatorType.VIBRATE

    def __post_init__(self) -> None:
        if not self.device_identifier:
            object.__setattr__(self, "device_identifier", self.device_name)

    @property
    def physical_key(self) -> tuple[str, MotorType, int]:
        return (self.device_identifier, self.motor_type, self.motor_index)

    def describe(self) -> str:
        kind = str(self.motor_type)
        if self.motor_type is MotorType.SCALAR:
            kind = f"{kind} ({self.actuator_type})"
        return f"{self.device_name} {kind}#{self.motor_index}"


@dataclass(frozen=True)
class Configuration:
    """One immutable generation of the tag mapping."""

    port: int = params.DEFAULT_PORT
    motors: tuple[MotorAddress, ...] = ()
    _by_tag: Mapping[str, MotorAddress] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        motors = tuple(self.motors)
        by_tag: dict[str, MotorAddress] = {}
        for motor in motors:
            if not motor.tag:
                raise ConfigurationError("motor tags must not be empty")
            if motor.tag in by_tag:
                raise ConfigurationError(f"duplicate motor tag {motor.tag!r}")
            by_tag[motor.tag] = motor
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"invalid port {self.port}")
        object.__setattr__(self, "motors", motors)
        object.__setattr__(self, "_by_tag", MappingProxyType(by_tag))

    def __iter__(self) -> Iterator[MotorAddress]:
        return iter(self.motors)

    def __len__(self) -> int:
        return len(self.motors)

    @property
    def tags(self) -> list[str]:
        return [motor.tag for motor in self.motors]

    def resolve(self, tag: str) -> MotorAddress | None:
        return self._by_tag.get(tag)

    def with_motors(self, motors: Iterable[MotorAddress]) -> "Configuration":
        return replace(self, motors=tuple(motors))

    def with_port(self, port: int) -> "Configuration":
        return replace(self, port=port)

    def with_tag(self, tag: str, motor: MotorAddress) -> "Configuration":
        """Return a copy where *motor* is bound to *tag*, replacing any binding of that motor."""

        motors = [
            existing
            for existing in self.motors
            if existing.tag != tag and existing.physical_key != motor.physical_key
        ]
        motors.append(replace(motor, tag=tag))
        return self.with_motors(motors)

    def without_tag(self, tag: str) -> "Configuration":
        return self.with_motors(motor for motor in self.motors if motor.tag != tag)


class ConfigurationTable:
    """Holds the active :class:`Configuration` and swaps it atomically."""

    def __init__(self, configuration: Configuration | None = None) -> None:
        self._lock = Lock()
        self._configuration = configuration or Configuration()
        self._generation = 0
        self._listeners: list[InstallListener] = []

    @property
    def generation(self) -> int:
        return self._generation

    def current(self) -> Configuration:
        return self._configuration

    def resolve(self, tag: str) -> MotorAddress | None:
        return self._configuration.resolve(tag)

    def add_listener(self, listener: InstallListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: InstallListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def install(self, configuration: Configuration) -> int:
        """Replace the active configuration and return the new generation number."""

        with self._lock:
            self._configuration = configuration
            self._generation += 1
            generation = self._generation
            # listeners run before install returns; commands and installs share
            # one event loop, so no command is routed between the swap and the
            # activity reset. The lock only orders concurrent installs.
            for listener in list(self._listeners):
                listener(configuration)
        LOGGER.info("Installed configuration generation %d (%d tags)", generation, len(configuration))
        return generation


__all__ = [
    "ActuatorType",
    "Configuration",
    "ConfigurationError",
    "ConfigurationTable",
    "MotorAddress",
]
