import pytest

from buttplug_lite.hapticlib import protocol
from buttplug_lite.hapticlib.protocol import (
    CommandRejected,
    Level,
    Linear,
    MotorType,
    Rotation,
    Scalar,
    VariantMismatch,
)


def test_parse_line_splits_commands_and_keeps_order():
    parsed = protocol.parse_line("foo:0;bar:0.3;baz:1")
    assert parsed.ok
    assert [command.tag for command in parsed.commands] == ["foo", "bar", "baz"]
    assert [command.variant for command in parsed.commands] == [Level(0.0), Level(0.3), Level(1.0)]


def test_parse_line_reports_malformed_command_without_dropping_siblings():
    parsed = protocol.parse_line("foo:0.1;bar:abc;baz:0.9")
    assert [command.tag for command in parsed.commands] == ["foo", "baz"]
    assert len(parsed.errors) == 1
    error = parsed.errors[0]
    assert error.position == 1
    assert error.token == "bar:abc"
    assert "value" in error.reason


def test_parse_line_ignores_empty_segments_and_whitespace():
    parsed = protocol.parse_line(" foo : 0.5 ;; \n")
    assert parsed.ok
    assert parsed.commands == [protocol.TaggedCommand("foo", Level(0.5))]


def test_parse_line_empty_input_has_no_commands():
    parsed = protocol.parse_line("")
    assert parsed.commands == []
    assert parsed.ok


def test_two_field_command_parses_as_linear():
    command = protocol.parse_command("gort:20:0.25")
    assert command.tag == "gort"
    assert command.variant == Linear(duration_ms=20, position=0.25)


@pytest.mark.parametrize(
    "token",
    [
        ":0.5",
        "foo",
        "foo:",
        "foo:1.5",
        "foo:-1.01",
        "foo:nan",
        "foo:inf",
        "foo:0x10",
        "gort:0:0.5",
        "gort:-5:0.5",
        "gort:2.5:0.5",
        "gort:20:1.1",
        "gort:20:-0.1",
        "gort:20:0.5:1",
    ],
)
def test_parse_command_rejects_malformed_tokens(token):
    with pytest.raises(CommandRejected):
        protocol.parse_command(token)


def test_single_field_accepts_signed_values_and_exponents():
    assert protocol.parse_command("spin:-0.75").variant == Level(-0.75)
    assert protocol.parse_command("foo:5e-1").variant == Level(0.5)
    assert protocol.parse_command("foo:.25").variant == Level(0.25)


def test_resolve_level_against_scalar_and_rotation():
    assert protocol.resolve_variant(Level(0.3), MotorType.SCALAR) == Scalar(0.3)
    rotation = protocol.resolve_variant(Level(-0.5), MotorType.ROTATION)
    assert rotation == Rotation(-0.5)
    assert not rotation.clockwise
    assert Rotation(0.0).clockwise


def test_resolve_negative_level_for_scalar_is_rejected():
    with pytest.raises(CommandRejected) as excinfo:
        protocol.resolve_variant(Level(-0.2), MotorType.SCALAR)
    assert not isinstance(excinfo.value, VariantMismatch)


def test_resolve_mismatched_shapes():
    with pytest.raises(VariantMismatch):
        protocol.resolve_variant(Level(0.5), MotorType.LINEAR)
    with pytest.raises(VariantMismatch):
        protocol.resolve_variant(Linear(20, 0.25), MotorType.SCALAR)
    with pytest.raises(VariantMismatch):
        protocol.resolve_variant(Linear(20, 0.25), MotorType.ROTATION)
    assert protocol.resolve_variant(Linear(20, 0.25), MotorType.LINEAR) == Linear(20, 0.25)


def test_stop_variant_per_motor_type():
    assert protocol.stop_variant(MotorType.SCALAR) == Scalar(0.0)
    assert protocol.stop_variant(MotorType.ROTATION) == Rotation(0.0)
    assert protocol.stop_variant(MotorType.LINEAR) is None


def test_variant_value_flattens_payload():
    assert protocol.variant_value(Linear(20, 0.25)) == (20.0, 0.25)
    assert protocol.variant_value(Scalar(0.4)) == (0.4,)
    assert protocol.variant_value(Rotation(-1.0)) == (-1.0,)


def test_motor_type_parse_and_str():
    assert MotorType.parse(" Scalar ") is MotorType.SCALAR
    assert str(MotorType.LINEAR) == "linear"
    with pytest.raises(ValueError):
        MotorType.parse("contraction")
