"""Parser for the haptic text protocol.

A line holds any number of commands separated by ``;``. Each command is
``tag:value`` or ``tag:duration_ms:position``::

    foo:0.5;bar:-0.25;gort:20:0.25

Single-field commands are ambiguous on the wire: the same ``tag:value`` drives
a scalar motor (strength) or a rotation motor (signed speed). The parser emits
them as :class:`Level` and :func:`resolve_variant` turns them into
:class:`Scalar` or :class:`Rotation` once the tag's motor type is known.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from math import isfinite
from typing import Union

from . import params

_FLOAT_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_DURATION_RE = re.compile(r"^\+?\d+$")


class MotorType(str, Enum):
    """Kind of motor a tag is bound to."""

    SCALAR = "scalar"
    LINEAR = "linear"
    ROTATION = "rotation"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "MotorType":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown motor type {value!r}") from None


class CommandRejected(ValueError):
    """Raised when a single command cannot be parsed or applied."""


class VariantMismatch(CommandRejected):
    """Raised when a command's shape does not fit the tag's motor type."""


@dataclass(slots=True, frozen=True)
class Level:
    """Unresolved single-field value in [-1, 1]."""

    value: float


@dataclass(slots=True, frozen=True)
class Scalar:
    strength: float


@dataclass(slots=True, frozen=True)
class Linear:
    duration_ms: int
    position: float


@dataclass(slots=True, frozen=True)
class Rotation:
    speed: float

    @property
    def clockwise(self) -> bool:
        return self.speed >= 0.0


Variant = Union[Level, Scalar, Linear, Rotation]
ResolvedVariant = Union[Scalar, Linear, Rotation]


@dataclass(slots=True, frozen=True)
class TaggedCommand:
    tag: str
    variant: Variant


@dataclass(slots=True, frozen=True)
class CommandError:
    """A rejected command: its position in the line, raw text and reason."""

    position: int
    token: str
    reason: str


@dataclass(slots=True)
class ParsedLine:
    commands: list[TaggedCommand] = field(default_factory=list)
    errors: list[CommandError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_line(line: str) -> ParsedLine:
    """Parse one protocol line.

    Every command is parsed on its own; a malformed command is reported in
    :attr:`ParsedLine.errors` and never prevents its siblings from parsing.
    """

    parsed = ParsedLine()
    for position, segment in enumerate(line.split(params.COMMAND_SEPARATOR)):
        token = segment.strip()
        if not token:
            continue
        try:
            parsed.commands.append(parse_command(token))
        except CommandRejected as exc:
            parsed.errors.append(CommandError(position=position, token=token, reason=str(exc)))
    return parsed


def parse_command(token: str) -> TaggedCommand:
    """Parse a single ``tag:field[:field]`` command."""

    tag, *fields = [part.strip() for part in token.split(params.FIELD_SEPARATOR)]
    if not tag:
        raise CommandRejected("missing motor tag")
    if not fields:
        raise CommandRejected(f"missing value for tag {tag!r}")
    if len(fields) == 1:
        value = _parse_float(fields[0], "value")
        _check_range(value, params.SPEED_MIN, params.SPEED_MAX, "value")
        return TaggedCommand(tag=tag, variant=Level(value))
    if len(fields) == 2:
        duration_ms = _parse_duration(fields[0])
        position = _parse_float(fields[1], "position")
        _check_range(position, params.POSITION_MIN, params.POSITION_MAX, "position")
        return TaggedCommand(tag=tag, variant=Linear(duration_ms=duration_ms, position=position))
    raise CommandRejected(f"too many fields for tag {tag!r}: expected at most 2, got {len(fields)}")


def resolve_variant(variant: Variant, motor_type: MotorType) -> ResolvedVariant:
    """Resolve *variant* against the declared *motor_type* of its tag."""

    if isinstance(variant, Level):
        if motor_type is MotorType.SCALAR:
            _check_range(variant.value, params.STRENGTH_MIN, params.STRENGTH_MAX, "strength")
            return Scalar(strength=variant.value)
        if motor_type is MotorType.ROTATION:
            return Rotation(speed=variant.value)
        raise VariantMismatch("linear motors need a duration and a position")
    if isinstance(variant, Scalar) and motor_type is MotorType.SCALAR:
        return variant
    if isinstance(variant, Rotation) and motor_type is MotorType.ROTATION:
        return variant
    if isinstance(variant, Linear) and motor_type is MotorType.LINEAR:
        return variant
    raise VariantMismatch(f"{type(variant).__name__} command cannot drive a {motor_type} motor")


def stop_variant(motor_type: MotorType) -> ResolvedVariant | None:
    """Return the command that halts a motor of *motor_type*, if it has one."""

    if motor_type is MotorType.SCALAR:
        return Scalar(strength=0.0)
    if motor_type is MotorType.ROTATION:
        return Rotation(speed=0.0)
    return None


def variant_value(variant: Variant) -> tuple[float, ...]:
    """Return the numeric payload of *variant* as a tuple."""

    if isinstance(variant, Linear):
        return (float(variant.duration_ms), variant.position)
    if isinstance(variant, Scalar):
        return (variant.strength,)
    if isinstance(variant, Rotation):
        return (variant.speed,)
    return (variant.value,)


def _parse_float(raw: str, label: str) -> float:
    if not _FLOAT_RE.match(raw):
        raise CommandRejected(f"could not parse {label} from {raw!r}")
    value = float(raw)
    if not isfinite(value):
        raise CommandRejected(f"{label} must be finite")
    return value


def _parse_duration(raw: str) -> int:
    if not _DURATION_RE.match(raw):
        raise CommandRejected(f"could not parse duration from {raw!r}")
    duration_ms = int(raw)
    if duration_ms <= 0:
        raise CommandRejected("duration must be a positive number of milliseconds")
    return duration_ms


def _check_range(value: float, minimum: float, maximum: float, label: str) -> None:
    if not minimum <= value <= maximum:
        raise CommandRejected(f"{label} {value} outside [{minimum}, {maximum}]")


__all__ = [
    "CommandError",
    "CommandRejected",
    "Level",
    "Linear",
    "MotorType",
    "ParsedLine",
    "ResolvedVariant",
    "Rotation",
    "Scalar",
    "TaggedCommand",
    "Variant",
    "VariantMismatch",
    "parse_command",
    "parse_line",
    "resolve_variant",
    "stop_variant",
    "variant_value",
]
