"""Textual entry point for buttplug-lite."""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence

from textual.app import App, ComposeResult, ScreenStackError
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import Mount
from textual.screen import ModalScreen
from textual.timer import Timer
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Log, Static

from .configuration import Configuration, ConfigurationError
from .device_layer import DeviceLayer, DeviceLayerError, DeviceSnapshot
from .discovery import TaggedMotor, list_registry_motors
from .hapticlib import params
from .intiface import DEFAULT_URL, IntifaceDeviceLayer
from .logging import configure_logging
from .persistence import DEFAULT_CONFIG_PATH, load_config
from .runtime import HapticRuntime
from .server import WebServer
from .simulated import SimulatedDeviceLayer
from .status import version_string
from .watchdog import ActivityState

LOGGER = logging.getLogger(__name__)

# characters that would split a tag on the wire
RESERVED_TAG_CHARACTERS = (params.COMMAND_SEPARATOR, params.FIELD_SEPARATOR)


def validate_tag(value: str) -> str | None:
    """Return an error message when *value* is not usable as a tag."""

    tag = value.strip()
    if not tag:
        return "Tag must not be empty."
    if any(char in tag for char in RESERVED_TAG_CHARACTERS):
        return "Tag must not contain ';' or ':'."
    if any(char.isspace() for char in tag):
        return "Tag must not contain whitespace."
    return None


def parse_port(value: str) -> int | None:
    try:
        port = int(value.strip())
    except ValueError:
        return None
    if not 0 < port < 65536:
        return None
    return port


class DevicePanel(Static):
    """Panel summarising the device server and connected devices."""

    DEFAULT_CSS = """
    DevicePanel {
        padding: 1 1;
        border: round $accent;
        height: 12;
    }
    """

    def update_devices(
        self,
        devices: Iterable[DeviceSnapshot],
        *,
        backend: str,
        backend_connected: bool,
        port: int,
        server_running: bool,
    ) -> None:
        lines = [
            f"[b]Backend[/b]  {backend} ({'connected' if backend_connected else 'offline'})",
            f"[b]Server[/b]   127.0.0.1:{port} ({'listening' if server_running else 'stopped'})",
            "",
        ]
        connected = [device for device in devices if device.connected]
        if not connected:
            lines.append("No devices connected.")
        for device in sorted(connected, key=lambda snapshot: snapshot.display_name):
            battery = "--" if device.battery_level is None else f"{device.battery_level * 100:0.0f}%"
            lines.append(f"{device.display_name}  [dim]battery[/dim] {battery}")
        self.update("\n".join(lines))


class MotorTable(DataTable):
    """Tagged and untagged motors."""

    DEFAULT_CSS = """
    MotorTable {
        border: round $accent;
        height: 1fr;
    }
    """

    def on_mount(self) -> None:  # noqa: D401
        self.add_columns("Tag", "Device", "Type", "Index", "Status")
        self.cursor_type = "row"
        self.show_cursor = True
        self.zebra_stripes = True
        self._row_keys: list[str] = []

    def update_rows(self, motors: Iterable[TaggedMotor], states: dict[str, ActivityState]) -> None:
        self.clear()
        self._row_keys.clear()
        for motor in motors:
            if not motor.connected:
                status = "Offline"
            elif motor.tag is not None and states.get(motor.tag) is ActivityState.ACTIVE:
                status = "Active"
            else:
                status = "Idle"
            self.add_row(
                motor.tag or "--",
                motor.address.device_name,
                str(motor.address.motor_type),
                str(motor.address.motor_index),
                status,
                key=motor.key,
            )
            self._row_keys.append(motor.key)

    def focus_key(self, key: str) -> None:
        try:
            row_index = self.get_row_index(key)
        except KeyError:
            return
        self.cursor_coordinate = (row_index, 0)

    def available_keys(self) -> list[str]:
        return list(self._row_keys)


class ActivityLog(Log):
    """Scrolling log widget."""

    DEFAULT_CSS = """
    ActivityLog {
        border: round $accent;
        height: 1fr;
    }
    """

    def on_mount(self) -> None:  # noqa: D401
        self.border_title = "Activity Log"
        self.auto_scroll = True


class HintPanel(Static):
    """Key binding hint box."""

    DEFAULT_CSS = """
    HintPanel {
        border: round $accent;
        height: 12;
        padding: 1 1;
    }
    """

    def update_hints(self, selected: TaggedMotor | None, *, unsaved: bool) -> None:
        selection = selected.address.describe() if selected is not None else "--"
        self.update(
            "\n".join(
                [
                    f"[b]Selected[/b]  {selection}",
                    f"[b]Changes[/b]   {'unsaved' if unsaved else 'applied'}",
                    "",
                    "[b]Key Bindings[/b]",
                    "T      Edit Tag",
                    "X      Clear Tag",
                    "P      Change Port",
                    "R      Re-scan",
                    "Space  E-STOP",
                    "Ctrl+S Apply + Save",
                ]
            )
        )


class TagModal(ModalScreen[Optional[str]]):
    """Modal dialog requesting a tag for one motor."""

    def __init__(self, description: str, default: str | None = None) -> None:
        super().__init__()
        self._description = description
        self._default = default
        self._error: Label | None = None
        self._input: Input | None = None

    def compose(self) -> ComposeResult:
        yield Static(f"Tag for {self._description}", id="tag-title")
        self._input = Input(self._default or "", placeholder="tag", id="tag-input")
        yield self._input
        self._error = Label("", id="tag-error")
        yield self._error
        with Horizontal(id="tag-buttons"):
            yield Button("Cancel", id="cancel")
            yield Button("Apply", id="apply", variant="primary")

    def on_mount(self, event: Mount) -> None:  # noqa: D401
        if self._input:
            self.set_focus(self._input)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel" or self._input is None:
            self.dismiss(None)
            return
        error = validate_tag(self._input.value)
        if error is not None:
            if self._error:
                self._error.update(error)
            return
        self.dismiss(self._input.value.strip())

    def on_input_submitted(self, event: Input.Submitted) -> None:
        apply_button = self.query_one("#apply", Button)
        self.on_button_pressed(Button.Pressed(apply_button))


class PortModal(ModalScreen[Optional[int]]):
    """Collect the port the command server listens on."""

    def __init__(self, current: int) -> None:
        super().__init__()
        self._input = Input(str(current), placeholder="port (1-65535)")
        self._error = Label("")

    def compose(self) -> ComposeResult:
        yield Static("Set server port", id="port-title")
        yield self._input
        yield self._error
        with Horizontal(id="port-buttons"):
            yield Button("Cancel", id="cancel")
            yield Button("Apply", id="apply", variant="primary")

    def on_mount(self, event: Mount) -> None:  # noqa: D401
        self.set_focus(self._input)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(None)
            return
        port = parse_port(self._input.value)
        if port is None:
            self._error.update("Enter a port between 1 and 65535.")
            return
        self.dismiss(port)


class ButtplugLiteApp(App[None]):
    """Configuration UI hosting the command server."""

    TITLE = params.APP_NAME

    CSS = """
    #content {
        height: 1fr;
    }

    #left-column,
    #right-column {
        height: 1fr;
    }

    #left-column {
        width: 2fr;
    }

    #right-column {
        width: 1fr;
    }
    """

    BINDINGS = [
        Binding("t", "edit_tag", "Edit Tag", show=True),
        Binding("x", "clear_tag", "Clear Tag", show=True),
        Binding("p", "change_port", "Port", show=True),
        Binding("r", "rescan", "Re-scan", show=True),
        Binding("space", "estop", "E-STOP", show=True),
        Binding("ctrl+s", "save_config", "Apply + Save", show=True),
        Binding("ctrl+c", "quit", "Quit", show=False),
    ]

    def __init__(self, runtime: HapticRuntime, web_server: WebServer | None = None) -> None:
        super().__init__()
        self.runtime = runtime
        self.web_server = web_server
        self._pending: Configuration = runtime.configuration
        self._motors: list[TaggedMotor] = []
        self._selected_key: str | None = None
        self._refresh_timer: Timer | None = None
        self._mounted = False
        self._stopped = False

    @property
    def pending(self) -> Configuration:
        return self._pending

    @property
    def unsaved(self) -> bool:
        return self._pending != self.runtime.configuration

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="content"):
            with Vertical(id="left-column"):
                yield DevicePanel(id="device-panel")
                yield MotorTable(id="motor-table")
            with Vertical(id="right-column"):
                yield ActivityLog(id="activity-log")
                yield HintPanel(id="hint-panel")
        yield Footer()

    def on_mount(self) -> None:
        self._mounted = True
        self.sub_title = version_string()
        self._refresh_all()
        self.run_worker(self._start_services(), name="services", group="services")
        self._refresh_timer = self.set_interval(1.0, self._refresh_all)

    async def on_unmount(self) -> None:
        if self._refresh_timer:
            self._refresh_timer.stop()
        await self._stop_services()
        self._mounted = False

    # --- Actions -----------------------------------------------------------

    def action_edit_tag(self) -> None:
        motor = self._require_selected_motor()
        if motor is None:
            return
        modal = TagModal(motor.address.describe(), motor.tag)
        self.push_screen(modal, callback=lambda tag: self._apply_tag(motor, tag))

    def action_clear_tag(self) -> None:
        motor = self._require_selected_motor()
        if motor is None:
            return
        if motor.tag is None:
            self._log("Selected motor has no tag.")
            return
        self._pending = self._pending.without_tag(motor.tag)
        self._log(f"Cleared tag '{motor.tag}'. Press Ctrl+S to apply.")
        self._refresh_all()

    def action_change_port(self) -> None:
        modal = PortModal(self._pending.port)
        self.push_screen(modal, callback=self._apply_port)

    def action_rescan(self) -> None:
        self._log("Scan requested.")
        self.run_worker(self._rescan(), name="rescan", group="scan", exclusive=True)

    def action_estop(self) -> None:
        halted = self.runtime.emergency_stop()
        self._log(f"E-STOP: halted {halted} motors.")

    def action_save_config(self) -> None:
        try:
            generation = self.runtime.apply_configuration(self._pending)
        except (OSError, ConfigurationError) as exc:
            self._log(f"Failed to save configuration: {exc}")
            return
        self._log(f"Configuration applied (generation {generation}) and saved.")
        self._refresh_all()

    async def action_quit(self) -> None:
        await self._stop_services()
        self.exit()

    # --- Internal helpers --------------------------------------------------

    def _require_selected_motor(self) -> TaggedMotor | None:
        motor = self._selected_motor()
        if motor is None:
            self._log("Select a motor row first.")
        return motor

    def _selected_motor(self) -> TaggedMotor | None:
        for motor in self._motors:
            if motor.key == self._selected_key:
                return motor
        return None

    def _apply_tag(self, motor: TaggedMotor, tag: Optional[str]) -> None:
        if tag is None:
            return
        previous = self._pending.resolve(tag)
        try:
            self._pending = self._pending.with_tag(tag, motor.address)
        except ConfigurationError as exc:
            self._log(f"Tag rejected: {exc}")
            return
        if previous is not None and previous.physical_key != motor.address.physical_key:
            self._log(f"Moved tag '{tag}' from {previous.describe()}.")
        self._log(f"Tagged {motor.address.describe()} as '{tag}'. Press Ctrl+S to apply.")
        self._refresh_all()

    def _apply_port(self, port: Optional[int]) -> None:
        if port is None or port == self._pending.port:
            return
        self._pending = self._pending.with_port(port)
        self._log(f"Port set to {port}. Press Ctrl+S to apply.")
        self._refresh_all()

    async def _start_services(self) -> None:
        await self.runtime.start()
        if not self.runtime.device_layer.connected:
            self._log(f"Device backend {self.runtime.device_layer.name} unavailable; see log file.")
        if self.web_server is not None:
            self._log(f"Listening on 127.0.0.1:{self.runtime.configuration.port}.")
            await self.web_server.serve()

    async def _stop_services(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self.web_server is not None:
            self.web_server.shutdown()
        await self.runtime.stop()

    async def _rescan(self) -> None:
        try:
            await self.runtime.device_layer.start_scanning()
        except DeviceLayerError as exc:
            self._log(f"Scan failed: {exc}")

    def _refresh_all(self) -> None:
        if not self._mounted:
            return
        self._motors = list_registry_motors(self.runtime.registry, self._pending)
        self._refresh_device_panel()
        self._refresh_motor_table()
        self._refresh_hint_panel()

    def _refresh_device_panel(self) -> None:
        panel = self.query_one(DevicePanel)
        layer = self.runtime.device_layer
        panel.update_devices(
            self.runtime.registry.devices(),
            backend=layer.name,
            backend_connected=layer.connected,
            port=self.runtime.configuration.port,
            server_running=self.web_server is not None and self.web_server.running,
        )

    def _refresh_motor_table(self) -> None:
        table = self.query_one(MotorTable)
        states = {entry.tag: entry.state for entry in self.runtime.activity.entries()}
        table.update_rows(self._motors, states)
        available = table.available_keys()
        if not available:
            self._selected_key = None
            return
        if self._selected_key not in available:
            self._selected_key = available[0]
        table.focus_key(self._selected_key)

    def _refresh_hint_panel(self) -> None:
        panel = self.query_one(HintPanel)
        panel.update_hints(self._selected_motor(), unsaved=self.unsaved)

    def _log(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        text = f"[{timestamp}] {message}"
        try:
            log = self.query_one(ActivityLog)
        except (LookupError, ScreenStackError):
            pass
        else:
            log.write_line(text)
        LOGGER.info(message)

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        table = getattr(event, "data_table", None)
        if table is not None and table.id != "motor-table":
            return
        key = getattr(event.row_key, "value", None)
        if key is None:
            return
        self._selected_key = key
        if self._mounted:
            self._refresh_hint_panel()


def build_device_layer(backend: str, *, intiface_url: str = DEFAULT_URL) -> DeviceLayer:
    if backend == "simulated":
        return SimulatedDeviceLayer()
    if backend == "intiface":
        return IntifaceDeviceLayer(intiface_url, client_name=params.APP_NAME)
    raise ValueError(f"unknown backend {backend!r}")


async def run_headless(runtime: HapticRuntime, web_server: WebServer) -> None:
    """Serve until the web server exits, then halt motors and disconnect."""

    await runtime.start()
    try:
        await web_server.serve()
    finally:
        web_server.shutdown()
        await runtime.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=params.APP_NAME,
        description="Route a minimal text haptic protocol to devices behind a device server.",
    )
    parser.add_argument("--config", type=Path, default=None, help=f"configuration file (default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--backend", choices=("intiface", "simulated"), default="intiface")
    parser.add_argument("--intiface-url", default=DEFAULT_URL, help="Intiface server websocket URL")
    parser.add_argument("--headless", action="store_true", help="run the servers without the terminal UI")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="increase log verbosity (repeatable)")
    parser.add_argument("--stdout", action="store_true", help="log to the console instead of a file")
    parser.add_argument("--log-filter", default=None, help="custom filter, e.g. 'warn,buttplug_lite=debug'")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        log_path = configure_logging(args.verbose, use_stdout=args.stdout, log_filter=args.log_filter)
    except ValueError as exc:
        parser.error(str(exc))
    LOGGER.info("Starting %s", version_string())
    if log_path is not None:
        LOGGER.debug("Logging to %s", log_path)

    configuration = load_config(args.config)
    device_layer = build_device_layer(args.backend, intiface_url=args.intiface_url)
    runtime = HapticRuntime(device_layer, configuration, config_path=args.config)
    web_server = WebServer(runtime)

    if args.headless:
        try:
            asyncio.run(run_headless(runtime, web_server))
        except KeyboardInterrupt:
            LOGGER.info("Interrupted")
        return 0

    ButtplugLiteApp(runtime, web_server).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
