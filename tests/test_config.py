from dataclasses import replace

import pytest

from ble_midi_bridge.config import (
    AppConfig,
    BleConfig,
    BridgeConfig,
    LoggingConfig,
    config_from_dict,
    load_config,
    validate_config,
    with_overrides,
)


def valid_config(tmp_path, **bridge):
    return AppConfig(
        bridge=BridgeConfig(**bridge),
        logging=LoggingConfig(dir=str(tmp_path / "logs")),
    )


def test_defaults_without_path():
    config = load_config()
    assert config.bridge.virtual_port_name == "AKAI_LPK25_IN_BLE"
    assert config.bridge.octave_offset == 0
    assert config.ble.scan_timeout_sec == 30
    assert config.ble.keepalive_sec == 10
    assert config.ble.status_check_sec == 1


def test_load_yaml(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text(
        "bridge:\n"
        "  virtual_port_name: MY_PORT\n"
        "  octave_offset: -1\n"
        "ble:\n"
        "  name_patterns: [LPK25]\n"
        "  reconnect_backoff_sec: 0.5\n"
        "logging:\n"
        "  verbose_whitelist: [midi]\n"
    )
    config = load_config(str(path))
    assert config.bridge == BridgeConfig("MY_PORT", -1)
    assert config.ble.name_patterns == ("LPK25",)
    assert config.ble.reconnect_backoff_sec == 0.5
    assert config.ble.keepalive_sec == 10
    assert config.logging.verbose_whitelist == ("midi",)


def test_env_substitution_is_typed(tmp_path, monkeypatch):
    monkeypatch.setenv("BRIDGE_OCTAVE", "2")
    monkeypatch.setenv("BRIDGE_PORT", "FROM_ENV")
    path = tmp_path / "bridge.yaml"
    path.write_text("bridge:\n  virtual_port_name: ${BRIDGE_PORT}\n  octave_offset: ${BRIDGE_OCTAVE}\n")

    config = load_config(str(path))
    assert config.bridge.virtual_port_name == "FROM_ENV"
    assert config.bridge.octave_offset == 2


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)) == AppConfig()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_file(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(str(path))


@pytest.mark.parametrize("raw", [
    {"bridge": {"octave": 1}},
    {"serial": {}},
    {"ble": ["hci0"]},
])
def test_unknown_or_bad_sections(raw):
    with pytest.raises(ValueError):
        config_from_dict(raw)


def test_overrides_skip_none():
    config = AppConfig()
    assert with_overrides(config, virtual_port_name=None, octave_offset=None) is config

    changed = with_overrides(config, octave_offset=-2)
    assert changed.bridge.octave_offset == -2
    assert changed.bridge.virtual_port_name == config.bridge.virtual_port_name
    assert config.bridge.octave_offset == 0


def test_valid_config_has_no_errors(tmp_path):
    assert validate_config(valid_config(tmp_path)) == []
    assert (tmp_path / "logs").is_dir()


@pytest.mark.parametrize("offset", [-12, 12, 1.5, True])
def test_octave_offset_range(tmp_path, offset):
    errors = validate_config(valid_config(tmp_path, octave_offset=offset))
    assert any("octave_offset" in e for e in errors)


@pytest.mark.parametrize("offset", [-11, 11])
def test_octave_offset_limits_are_valid(tmp_path, offset):
    assert validate_config(valid_config(tmp_path, octave_offset=offset)) == []


def test_blank_port_name(tmp_path):
    errors = validate_config(valid_config(tmp_path, virtual_port_name="  "))
    assert errors == ["bridge.virtual_port_name is required"]


@pytest.mark.parametrize("ble, fragment", [
    (BleConfig(scan_timeout_sec=0), "scan_timeout_sec"),
    (BleConfig(keepalive_sec=-1), "keepalive_sec"),
    (BleConfig(status_check_sec=10, keepalive_sec=10), "shorter than"),
    (BleConfig(keepalive_max_failures=0), "keepalive_max_failures"),
    (BleConfig(reconnect_backoff_sec=0), "reconnect_backoff_sec"),
    (BleConfig(service_uuid="not-a-uuid"), "service_uuid"),
    (BleConfig(name_patterns=()), "name_patterns"),
])
def test_ble_validation(tmp_path, ble, fragment):
    config = replace(valid_config(tmp_path), ble=ble)
    errors = validate_config(config)
    assert any(fragment in e for e in errors), errors


def test_unknown_log_mode(tmp_path):
    config = replace(valid_config(tmp_path), logging=LoggingConfig(dir=str(tmp_path), mode="chatty"))
    assert validate_config(config) == ["logging.mode must be one of regular, verbose"]


def test_name_patterns_must_be_strings(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text(f"ble:\n  name_patterns: [LPK25, 25]\nlogging:\n  dir: {tmp_path / 'logs'}\n")

    errors = validate_config(load_config(str(path)))
    assert errors == ["ble.name_patterns must be non-empty strings"]
