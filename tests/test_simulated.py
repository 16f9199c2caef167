import asyncio

import pytest

from buttplug_lite.device_layer import BatteryUpdated, DeviceConnected, DeviceDisconnected, DeviceLayerError
from buttplug_lite.hapticlib.protocol import MotorType
from buttplug_lite.simulated import SentCommand, SimulatedDeviceLayer, default_devices


def test_connect_announces_default_devices():
    layer = SimulatedDeviceLayer()
    events = []
    layer.register_listener(events.append)

    asyncio.run(layer.connect())

    assert layer.connected
    assert [event.snapshot.display_name for event in events] == [
        "Lovense Edge",
        "Vorze A10 Cyclone SA",
        "Kiiroo Keon",
    ]
    assert all(isinstance(event, DeviceConnected) for event in events)


def test_send_records_commands():
    layer = SimulatedDeviceLayer()
    asyncio.run(layer.connect())

    layer.send_scalar("simulated://edge", 1, 0.25)
    layer.send_rotation("simulated://cyclone", 0, -0.5)
    layer.send_linear("simulated://keon", 0, 300, 0.9)

    assert layer.sent == [
        SentCommand("simulated://edge", MotorType.SCALAR, 1, (0.25,)),
        SentCommand("simulated://cyclone", MotorType.ROTATION, 0, (-0.5,)),
        SentCommand("simulated://keon", MotorType.LINEAR, 0, (300.0, 0.9)),
    ]


def test_send_fails_when_not_connected():
    layer = SimulatedDeviceLayer()
    with pytest.raises(DeviceLayerError):
        layer.send_scalar("simulated://edge", 0, 0.5)


@pytest.mark.parametrize(
    "identifier, motor_type, index",
    [
        ("simulated://nope", MotorType.SCALAR, 0),
        ("simulated://edge", MotorType.SCALAR, 5),
        ("simulated://edge", MotorType.ROTATION, 0),
    ],
)
def test_send_rejects_unknown_targets(identifier, motor_type, index):
    layer = SimulatedDeviceLayer()
    asyncio.run(layer.connect())
    with pytest.raises(DeviceLayerError):
        if motor_type is MotorType.SCALAR:
            layer.send_scalar(identifier, index, 0.5)
        else:
            layer.send_rotation(identifier, index, 0.5)
    assert layer.sent == []


def test_disconnect_reconnect_and_battery_events():
    layer = SimulatedDeviceLayer()
    asyncio.run(layer.connect())
    events = []
    layer.register_listener(events.append)

    layer.disconnect_device("simulated://edge")
    with pytest.raises(DeviceLayerError):
        layer.send_scalar("simulated://edge", 0, 0.5)
    layer.reconnect_device("simulated://edge")
    layer.set_battery("simulated://edge", 0.3)
    layer.send_scalar("simulated://edge", 0, 0.5)

    assert isinstance(events[0], DeviceDisconnected)
    assert isinstance(events[1], DeviceConnected)
    assert events[2] == BatteryUpdated("simulated://edge", 0.3)
    assert len(layer.commands_for("simulated://edge")) == 1
    assert [device.device_identifier for device in layer.enumerate_devices()][0] == "simulated://edge"


def test_unregistered_listener_receives_nothing():
    layer = SimulatedDeviceLayer(default_devices()[:1])
    events = []
    layer.register_listener(events.append)
    layer.unregister_listener(events.append)
    asyncio.run(layer.connect())
    assert events == []
