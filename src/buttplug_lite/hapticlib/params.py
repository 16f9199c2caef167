"""Shared constants for the haptic wire protocol."""

from __future__ import annotations

APP_NAME = "buttplug-lite"
DIST_NAME = "buttplug-lite"

DEFAULT_PORT = 3031
CONFIG_VERSION = 3

COMMAND_SEPARATOR = ";"
FIELD_SEPARATOR = ":"

STRENGTH_MIN = 0.0
STRENGTH_MAX = 1.0
POSITION_MIN = 0.0
POSITION_MAX = 1.0
SPEED_MIN = -1.0
SPEED_MAX = 1.0

WATCHDOG_TIMEOUT_S = 10.0
WATCHDOG_TICK_S = 1.0

DEVICE_RECONNECT_DELAY_S = 5.0

BATTERY_UNKNOWN = -1

__all__ = [
    "APP_NAME",
    "DIST_NAME",
    "DEFAULT_PORT",
    "CONFIG_VERSION",
    "COMMAND_SEPARATOR",
    "FIELD_SEPARATOR",
    "STRENGTH_MIN",
    "STRENGTH_MAX",
    "POSITION_MIN",
    "POSITION_MAX",
    "SPEED_MIN",
    "SPEED_MAX",
    "WATCHDOG_TIMEOUT_S",
    "WATCHDOG_TICK_S",
    "DEVICE_RECONNECT_DELAY_S",
    "BATTERY_UNKNOWN",
]
