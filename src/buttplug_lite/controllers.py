"""Route parsed protocol commands to the device layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import monotonic
from typing import Callable

from .configuration import ConfigurationTable, MotorAddress
from .device_layer import DeviceLayer, DeviceLayerError
from .hapticlib import protocol
from .hapticlib.protocol import CommandRejected, Linear, ResolvedVariant, Rotation, Scalar, Variant, VariantMismatch
from .watchdog import ActivityTracker

LOGGER = logging.getLogger(__name__)

LOG_PREFIX = "/haptic"


@dataclass(slots=True, frozen=True)
class RoutedCommand:
    address: MotorAddress
    variant: ResolvedVariant
    delivered: bool


def dispatch(device_layer: DeviceLayer, address: MotorAddress, variant: ResolvedVariant) -> None:
    """Submit *variant* to the motor at *address*."""

    if isinstance(variant, Scalar):
        device_layer.send_scalar(address.device_identifier, address.motor_index, variant.strength, address.actuator_type)
    elif isinstance(variant, Rotation):
        device_layer.send_rotation(address.device_identifier, address.motor_index, variant.speed)
    elif isinstance(variant, Linear):
        device_layer.send_linear(address.device_identifier, address.motor_index, variant.duration_ms, variant.position)
    else:  # pragma: no cover - resolve_variant never returns anything else
        raise TypeError(f"unsupported variant {variant!r}")


class CommandRouter:
    """Resolve tags against the active configuration and forward commands.

    Nothing here raises back to the caller: the protocol has no channel for
    errors, so unknown tags and type mismatches are dropped and device
    failures are logged.
    """

    def __init__(
        self,
        table: ConfigurationTable,
        device_layer: DeviceLayer,
        activity: ActivityTracker,
        *,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._table = table
        self._device_layer = device_layer
        self._activity = activity
        self._clock = clock

    def route_line(self, line: str) -> list[RoutedCommand]:
        parsed = protocol.parse_line(line)
        for error in parsed.errors:
            LOGGER.debug("%s: error parsing command %r: %s", LOG_PREFIX, error.token, error.reason)
        routed: list[RoutedCommand] = []
        for command in parsed.commands:
            result = self.route(command.tag, command.variant)
            if result is not None:
                routed.append(result)
        return routed

    def route(self, tag: str, variant: Variant) -> RoutedCommand | None:
        address = self._table.resolve(tag)
        if address is None:
            LOGGER.debug("%s: ignoring unknown motor tag %s", LOG_PREFIX, tag)
            return None
        try:
            resolved = protocol.resolve_variant(variant, address.motor_type)
        except VariantMismatch as exc:
            LOGGER.info("%s: ignoring command for tag %s: %s", LOG_PREFIX, tag, exc)
            return None
        except CommandRejected as exc:
            LOGGER.warning("%s: rejected command for tag %s: %s", LOG_PREFIX, tag, exc)
            return None

        delivered = True
        try:
            dispatch(self._device_layer, address, resolved)
        except DeviceLayerError as exc:
            delivered = False
            LOGGER.warning("%s: error sending command to %s: %s", LOG_PREFIX, address.describe(), exc)
        # recorded even when undelivered so a device that comes back still gets its idle stop
        self._activity.record(address, resolved, self._clock())
        return RoutedCommand(address=address, variant=resolved, delivered=delivered)


__all__ = ["CommandRouter", "RoutedCommand", "dispatch"]
