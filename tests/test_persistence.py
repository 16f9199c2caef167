from pathlib import Path

import pytest
import yaml

from buttplug_lite.configuration import ActuatorType, Configuration, ConfigurationError, MotorAddress
from buttplug_lite.hapticlib.protocol import MotorType
from buttplug_lite.persistence import backup_path, config_from_dict, config_to_dict, load_config, save_config


def _config() -> Configuration:
    return Configuration(
        port=4040,
        motors=(
            MotorAddress(
                tag="o",
                device_name="Lovense Edge",
                motor_index=1,
                motor_type=MotorType.SCALAR,
                actuator_type=ActuatorType.OSCILLATE,
            ),
            MotorAddress(
                tag="spin",
                device_name="Vorze A10 Cyclone SA",
                device_identifier="Vorze A10 Cyclone SA#2",
                motor_index=0,
                motor_type=MotorType.ROTATION,
                actuator_type=ActuatorType.ROTATE,
            ),
        ),
    )


def test_load_config_returns_defaults_when_missing(tmp_path: Path):
    cfg_path = tmp_path / "nested" / "config.yaml"
    config = load_config(cfg_path)
    assert config == Configuration()
    assert cfg_path.parent.is_dir()


def test_save_and_reload_round_trip(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    save_config(_config(), cfg_path)
    assert load_config(cfg_path) == _config()


def test_saved_document_layout(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    save_config(_config(), cfg_path)
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8"))
    assert data["version"] == 3
    assert data["port"] == 4040
    assert data["tags"]["o"] == {
        "device_name": "Lovense Edge",
        "device_identifier": "Lovense Edge",
        "feature_index": 1,
        "feature_type": {"type": "Scalar", "actuator_type": "Oscillate"},
    }
    assert data["tags"]["spin"]["feature_type"] == {"type": "Rotation"}


def test_config_dict_round_trip_keeps_tag_order():
    data = config_to_dict(_config())
    assert list(data["tags"]) == ["o", "spin"]
    assert config_from_dict(data).tags == ["o", "spin"]


def test_v2_document_is_migrated_and_backed_up(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    legacy = {
        "version": 2,
        "port": 3031,
        "tags": {
            "v": {"device_name": "Lovense Edge", "feature_index": 0, "feature_type": "Vibration"},
            "r": {"device_name": "Vorze A10 Cyclone SA", "feature_index": 0, "feature_type": "Rotation"},
            "l": {"device_name": "Kiiroo Keon", "feature_index": 0, "feature_type": "Linear"},
            "c1": {"device_name": "Lovense Max", "feature_index": 0, "feature_type": "Vibration"},
            "c2": {"device_name": "Lovense Max", "feature_index": 0, "feature_type": "Contraction"},
        },
    }
    cfg_path.write_text(yaml.safe_dump(legacy), encoding="utf-8")

    config = load_config(cfg_path)

    assert sorted(config.tags) == ["l", "r", "v"]
    assert config.resolve("v").motor_type is MotorType.SCALAR
    assert config.resolve("v").actuator_type is ActuatorType.VIBRATE
    assert config.resolve("r").motor_type is MotorType.ROTATION
    assert config.resolve("l").motor_type is MotorType.LINEAR
    assert backup_path(cfg_path, 2).exists()
    assert yaml.safe_load(cfg_path.read_text(encoding="utf-8"))["version"] == 3


def test_unreadable_document_falls_back_to_defaults(tmp_path: Path, caplog):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("- just\n- a list\n", encoding="utf-8")

    config = load_config(cfg_path)

    assert config == Configuration()
    assert backup_path(cfg_path, 0).exists()
    assert "Falling back to default config" in caplog.text


def test_invalid_entries_fall_back_to_defaults(tmp_path: Path):
    cfg_path = tmp_path / "config.yaml"
    document = {"version": 3, "port": 99999, "tags": {}}
    cfg_path.write_text(yaml.safe_dump(document), encoding="utf-8")

    assert load_config(cfg_path) == Configuration()
    assert backup_path(cfg_path, 3).exists()


@pytest.mark.parametrize(
    "document",
    [
        "version: 3\ntags:\n  - a\n  - b\n",
        "version: 3\ntags:\n  a: not-a-mapping\n",
        "version: 3\ntags:\n  a:\n    device_name: Lovense Edge\n    feature_type: [Scalar]\n",
        "version: 2\ntags:\n  - a\n",
        "version: 2\ntags:\n  a: [Vibration]\n",
    ],
)
def test_misshapen_documents_fall_back_to_defaults(tmp_path: Path, document: str):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(document, encoding="utf-8")

    assert load_config(cfg_path) == Configuration()
    version = yaml.safe_load(document)["version"]
    assert backup_path(cfg_path, version).exists()


def test_config_from_dict_rejects_non_mapping_tags():
    with pytest.raises(ConfigurationError):
        config_from_dict({"version": 3, "tags": ["a", "b"]})
