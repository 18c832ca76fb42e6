"""Configuration management for the BLE-MIDI bridge."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

# BLE-MIDI protocol UUIDs
BLE_MIDI_SERVICE_UUID = "03b80e5a-ede8-4b33-a751-6ce34ec4c700"
BLE_MIDI_CHARACTERISTIC_UUID = "7772e5db-3868-4112-a1a9-f2669d106bf3"

LOG_MODES = ("regular", "verbose")


@dataclass(frozen=True)
class BridgeConfig:
    """Output port and event transform settings."""

    virtual_port_name: str = "AKAI_LPK25_IN_BLE"
    octave_offset: int = 0


@dataclass(frozen=True)
class BleConfig:
    """Discovery, connection and link supervision settings."""

    adapter: str = "hci0"
    name_patterns: Tuple[str, ...] = ("LPK25", "AKAI")
    service_uuid: str = BLE_MIDI_SERVICE_UUID
    characteristic_uuid: str = BLE_MIDI_CHARACTERISTIC_UUID
    scan_timeout_sec: int = 30
    keepalive_sec: int = 10
    status_check_sec: int = 1
    keepalive_max_failures: int = 3
    reconnect_backoff_sec: float = 2.0
    connect_timeout_sec: float = 20.0


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for the NDJSON event log."""

    dir: str = "./logs"
    file_prefix: str = "bridge"
    mode: str = "regular"  # regular or verbose
    ndjson: bool = True
    verbose_whitelist: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration, read-only once loaded."""

    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    ble: BleConfig = field(default_factory=BleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load configuration from YAML file with environment variable support.

    Without a path the built-in defaults are returned.
    """
    if config_path is None:
        return AppConfig()

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ValueError(f"Invalid configuration file: {config_path}")

    _substitute_env_vars(raw_config)
    return config_from_dict(raw_config)


def config_from_dict(raw_config: Dict[str, Any]) -> AppConfig:
    """Build an AppConfig from already-parsed YAML data."""
    unknown = set(raw_config) - {"bridge", "ble", "logging"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

    bridge = _build(BridgeConfig, raw_config.get("bridge"))
    ble = _build(BleConfig, raw_config.get("ble"), tuple_fields=("name_patterns",))
    logging_config = _build(LoggingConfig, raw_config.get("logging"), tuple_fields=("verbose_whitelist",))

    return AppConfig(bridge=bridge, ble=ble, logging=logging_config)


def with_overrides(config: AppConfig, **bridge_values: Any) -> AppConfig:
    """Return a copy of `config` with bridge settings replaced (CLI overrides)."""
    values = {k: v for k, v in bridge_values.items() if v is not None}
    if not values:
        return config
    return replace(config, bridge=replace(config.bridge, **values))


def _build(cls: Any, data: Optional[Dict[str, Any]], tuple_fields: Tuple[str, ...] = ()) -> Any:
    if not data:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section for {cls.__name__} must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")

    values = dict(data)
    for name in tuple_fields:
        if name in values:
            value = values[name]
            # Accept a mapping for compatibility with older whitelists
            if isinstance(value, dict):
                value = list(value.keys())
            elif isinstance(value, str):
                value = [value]
            values[name] = tuple(value or ())
    return cls(**values)


def _substitute_env_vars(data: Any) -> None:
    """Recursively substitute ${VAR} values; substituted text is parsed as YAML."""
    if isinstance(data, dict):
        items = list(data.items())
        for key, value in items:
            if _is_env_ref(value):
                data[key] = _env_value(value)
            else:
                _substitute_env_vars(value)
    elif isinstance(data, list):
        for i, item in enumerate(data):
            if _is_env_ref(item):
                data[i] = _env_value(item)
            else:
                _substitute_env_vars(item)


def _is_env_ref(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("${") and value.endswith("}")


def _env_value(value: str) -> Any:
    env = os.getenv(value[2:-1])
    if env is None:
        return value
    return yaml.safe_load(env)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return list of validation errors."""
    errors = []
    bridge = config.bridge
    ble = config.ble

    if not isinstance(bridge.virtual_port_name, str) or not bridge.virtual_port_name.strip():
        errors.append("bridge.virtual_port_name is required")
    if not _is_int(bridge.octave_offset) or not -11 <= bridge.octave_offset <= 11:
        errors.append("bridge.octave_offset must be an integer between -11 and 11")

    for name in ("scan_timeout_sec", "keepalive_sec", "status_check_sec"):
        value = getattr(ble, name)
        if not _is_int(value) or value <= 0:
            errors.append(f"ble.{name} must be a positive integer")
    if (
        _is_int(ble.keepalive_sec)
        and _is_int(ble.status_check_sec)
        and ble.status_check_sec >= ble.keepalive_sec
    ):
        errors.append("ble.status_check_sec must be shorter than ble.keepalive_sec")
    if not _is_int(ble.keepalive_max_failures) or ble.keepalive_max_failures < 1:
        errors.append("ble.keepalive_max_failures must be at least 1")
    for name in ("reconnect_backoff_sec", "connect_timeout_sec"):
        value = getattr(ble, name)
        if not _is_number(value) or value <= 0:
            errors.append(f"ble.{name} must be positive")

    for name in ("service_uuid", "characteristic_uuid"):
        try:
            uuid.UUID(str(getattr(ble, name)))
        except ValueError:
            errors.append(f"ble.{name} is not a valid UUID: {getattr(ble, name)}")
    if not ble.name_patterns:
        errors.append("ble.name_patterns must not be empty")
    elif not all(isinstance(p, str) and p for p in ble.name_patterns):
        errors.append("ble.name_patterns must be non-empty strings")

    if config.logging.mode not in LOG_MODES:
        errors.append(f"logging.mode must be one of {', '.join(LOG_MODES)}")
    if config.logging.ndjson:
        path = Path(config.logging.dir)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create directory logging.dir: {config.logging.dir} - {e}")

    return errors
