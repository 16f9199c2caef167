import asyncio
from pathlib import Path

import pytest
from rich.console import Console
from textual.message_pump import active_app

from buttplug_lite.app import (
    ButtplugLiteApp,
    MotorTable,
    PortModal,
    TagModal,
    build_device_layer,
    build_parser,
    parse_port,
    validate_tag,
)
from buttplug_lite.configuration import Configuration, MotorAddress
from buttplug_lite.discovery import TaggedMotor
from buttplug_lite.hapticlib.protocol import MotorType
from buttplug_lite.intiface import IntifaceDeviceLayer
from buttplug_lite.persistence import load_config
from buttplug_lite.runtime import HapticRuntime
from buttplug_lite.simulated import SimulatedDeviceLayer
from buttplug_lite.watchdog import ActivityState

EDGE = "simulated://edge"


class _DummyApp:
    """Minimal stand-in providing the console attribute required by Textual widgets."""

    def __init__(self) -> None:
        self.console = Console()


class _StubInput:
    def __init__(self, value: str = "") -> None:
        self.value = value


class _StubLabel:
    def __init__(self) -> None:
        self.text = ""

    def update(self, text: str) -> None:
        self.text = text


class _StubButtonEvent:
    def __init__(self, button_id: str) -> None:
        self.button = type("_Btn", (), {"id": button_id})()


def _edge_motor(index: int = 0, tag: str | None = None, connected: bool = True) -> TaggedMotor:
    address = MotorAddress(
        tag=tag or "",
        device_name="Lovense Edge",
        device_identifier=EDGE,
        motor_index=index,
        motor_type=MotorType.SCALAR,
    )
    return TaggedMotor(address=address, tag=tag, connected=connected)


def _app(tmp_path: Path, configuration: Configuration | None = None) -> tuple[ButtplugLiteApp, list[str]]:
    runtime = HapticRuntime(SimulatedDeviceLayer(), configuration, config_path=tmp_path / "config.yaml")
    app = ButtplugLiteApp(runtime)
    messages: list[str] = []
    app._log = lambda message: messages.append(message)
    return app, messages


@pytest.mark.parametrize(
    "value, ok",
    [("foo", True), (" foo ", True), ("", False), ("a;b", False), ("a:b", False), ("a b", False)],
)
def test_validate_tag(value: str, ok: bool) -> None:
    assert (validate_tag(value) is None) is ok


def test_parse_port() -> None:
    assert parse_port(" 3031 ") == 3031
    assert parse_port("0") is None
    assert parse_port("70000") is None
    assert parse_port("http") is None


def test_motor_table_update_rows_marks_status() -> None:
    table = MotorTable()
    token = active_app.set(_DummyApp())
    try:
        table.add_columns("Tag", "Device", "Type", "Index", "Status")
        table._row_keys = []
        motors = [
            _edge_motor(0, "foo"),
            _edge_motor(1),
            TaggedMotor(
                address=MotorAddress(tag="ghost", device_name="Old Toy", motor_index=0, motor_type=MotorType.ROTATION),
                tag="ghost",
                connected=False,
            ),
        ]
        table.update_rows(motors, {"foo": ActivityState.ACTIVE})
        rows = [table.get_row(key) for key in table.available_keys()]
    finally:
        active_app.reset(token)

    assert rows[0] == ["foo", "Lovense Edge", "scalar", "0", "Active"]
    assert rows[1] == ["--", "Lovense Edge", "scalar", "1", "Idle"]
    assert rows[2] == ["ghost", "Old Toy", "rotation", "0", "Offline"]


def test_tag_modal_validates_before_dismissing() -> None:
    token = active_app.set(_DummyApp())
    try:
        modal = TagModal("Lovense Edge scalar#0", default=None)
        modal._input = _StubInput("bad;tag")
        modal._error = _StubLabel()
        captured: list[str | None] = []
        modal.dismiss = lambda value: captured.append(value)
        modal.on_button_pressed(_StubButtonEvent("apply"))
        modal._input = _StubInput("  foo ")
        modal.on_button_pressed(_StubButtonEvent("apply"))
    finally:
        active_app.reset(token)

    assert "';' or ':'" in modal._error.text
    assert captured == ["foo"]


def test_port_modal_parses_port() -> None:
    token = active_app.set(_DummyApp())
    try:
        modal = PortModal(3031)
        modal._input = _StubInput("4040")
        captured: list[int | None] = []
        modal.dismiss = lambda value: captured.append(value)
        modal.on_button_pressed(_StubButtonEvent("apply"))
        modal.on_button_pressed(_StubButtonEvent("cancel"))
    finally:
        active_app.reset(token)

    assert captured == [4040, None]


def test_tag_edits_are_staged_until_saved(tmp_path: Path) -> None:
    app, messages = _app(tmp_path)

    app._apply_tag(_edge_motor(0), "foo")

    assert app.unsaved
    assert app.pending.resolve("foo").motor_index == 0
    assert app.runtime.configuration.resolve("foo") is None

    app.action_save_config()

    assert not app.unsaved
    assert app.runtime.configuration.resolve("foo").device_identifier == EDGE
    assert load_config(tmp_path / "config.yaml").tags == ["foo"]
    assert any("generation 1" in message for message in messages)


def test_retagging_moves_tag_and_clear_removes_it(tmp_path: Path) -> None:
    app, messages = _app(tmp_path)
    app._apply_tag(_edge_motor(0), "foo")
    app._apply_tag(_edge_motor(1), "foo")

    assert app.pending.tags == ["foo"]
    assert app.pending.resolve("foo").motor_index == 1
    assert any("Moved tag 'foo'" in message for message in messages)

    app._motors = [_edge_motor(1, "foo")]
    app._selected_key = app._motors[0].key
    app.action_clear_tag()

    assert app.pending.tags == []


def test_actions_require_selection(tmp_path: Path) -> None:
    app, messages = _app(tmp_path)
    app.action_clear_tag()
    assert messages == ["Select a motor row first."]


def test_port_change_is_staged(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    app._apply_port(4040)
    assert app.pending.port == 4040
    assert app.runtime.configuration.port == 3031
    app._apply_port(None)
    assert app.pending.port == 4040


def test_estop_halts_configured_motors(tmp_path: Path) -> None:
    foo = _edge_motor(0, "foo").address
    app, messages = _app(tmp_path, Configuration(motors=(foo,)))
    layer = app.runtime.device_layer
    asyncio.run(layer.connect())

    app.action_estop()

    assert [command.values for command in layer.commands_for(EDGE)] == [(0.0,)]
    assert messages == ["E-STOP: halted 1 motors."]


def test_build_device_layer_backends() -> None:
    assert isinstance(build_device_layer("simulated"), SimulatedDeviceLayer)
    assert isinstance(build_device_layer("intiface", intiface_url="ws://127.0.0.1:9"), IntifaceDeviceLayer)
    with pytest.raises(ValueError):
        build_device_layer("serial")


def test_parser_defaults_and_flags() -> None:
    parser = build_parser()
    defaults = parser.parse_args([])
    assert defaults.backend == "intiface"
    assert defaults.verbose == 0
    assert not defaults.headless

    args = parser.parse_args(["--backend", "simulated", "-vv", "--stdout", "--headless", "--config", "x.yaml"])
    assert args.backend == "simulated"
    assert args.verbose == 2
    assert args.stdout and args.headless
    assert args.config == Path("x.yaml")
