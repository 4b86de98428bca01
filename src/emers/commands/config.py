"""Loading and validation of the EMERS runtime configuration.

Example config file (emers.yaml):

    event_db_path: "./events.db"
    event_db_backup_path: "./events.db.bak"
    threshold:
      price: 0.05
      volume: 3.0
      atr: 2.0
    news:
      confidence_cutoff: 0.6
    positive_words: ["gain", "growth", "beat"]
    negative_words: ["loss", "miss", "lawsuit"]
    log_level: "INFO"

Every key is optional. Nested sections may also be written with dotted keys,
e.g. ``threshold.price: 0.05``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from emers.exceptions import ConfigError
from emers.types import EmersConfig

log = logging.getLogger(__name__)

# Config key (dotted form) -> EmersConfig field
CONFIG_KEYS: dict[str, str] = {
    "event_db_path": "event_db_path",
    "event_db_backup_path": "event_db_backup_path",
    "threshold.price": "threshold_price",
    "threshold.volume": "threshold_volume",
    "threshold.atr": "threshold_atr",
    "news.confidence_cutoff": "news_confidence_cutoff",
    "positive_words": "positive_words",
    "negative_words": "negative_words",
    "log_level": "log_level",
    "max_gap_days": "max_gap_days",
    "max_entities": "max_entities",
    "volume_window": "volume_window",
    "atr_period": "atr_period",
    "atr_lookback": "atr_lookback",
    "tiingo_api_key": "tiingo_api_key",
}

NESTED_SECTIONS = frozenset(["threshold", "news"])

VALID_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


def _flatten(raw_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested sections into dotted keys."""
    flat: dict[str, Any] = {}
    for key, value in raw_config.items():
        key = str(key)
        if key in NESTED_SECTIONS:
            if not isinstance(value, dict):
                raise ConfigError(f"'{key}' must be a mapping")
            for sub_key, sub_value in value.items():
                flat[f"{key}.{sub_key}"] = sub_value
        else:
            flat[key] = value
    return flat


def _positive_number(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if value <= 0:
        raise ConfigError(f"'{key}' must be positive, got {value}")
    return float(value)


def _integer(key: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def _word_list(key: str, value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(word, str) for word in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return value


def _path(key: str, value: Any) -> Path:
    if not isinstance(value, (str, Path)) or not str(value):
        raise ConfigError(f"'{key}' must be a non-empty path")
    return Path(value)


def parse_emers_config(raw_config: dict[str, Any]) -> EmersConfig:
    """Validate a raw configuration mapping.

    :param raw_config: Parsed YAML document.
    :returns: Validated EmersConfig object.
    :raises ConfigError: On unknown keys or invalid values.
    """
    flat = _flatten(raw_config)
    unknown = sorted(set(flat) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}", keys=unknown)

    values: dict[str, Any] = {}
    for key, value in flat.items():
        field = CONFIG_KEYS[key]
        if key in ("event_db_path", "event_db_backup_path"):
            values[field] = _path(key, value)
        elif key.startswith("threshold."):
            values[field] = _positive_number(key, value)
        elif key == "news.confidence_cutoff":
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
                raise ConfigError(f"'{key}' must be a number in [0, 1], got {value!r}")
            values[field] = float(value)
        elif key in ("positive_words", "negative_words"):
            values[field] = _word_list(key, value)
        elif key == "log_level":
            level = str(value).upper()
            if level not in VALID_LOG_LEVELS:
                raise ConfigError(
                    f"Invalid log_level '{value}'. Valid options: {sorted(VALID_LOG_LEVELS)}"
                )
            values[field] = level
        elif key == "max_gap_days":
            values[field] = None if value is None else _integer(key, value, 1)
        elif key == "max_entities":
            values[field] = _integer(key, value, 0)
        elif key in ("volume_window", "atr_period"):
            values[field] = _integer(key, value, 2)
        elif key == "atr_lookback":
            values[field] = _integer(key, value, 1)
        elif key == "tiingo_api_key":
            values[field] = None if value is None else str(value)

    if "event_db_path" in values and "event_db_backup_path" not in values:
        primary = values["event_db_path"]
        values["event_db_backup_path"] = primary.with_name(primary.name + ".bak")
    if values.get("tiingo_api_key") is None and os.environ.get("TIINGO_API_KEY"):
        values["tiingo_api_key"] = os.environ["TIINGO_API_KEY"]

    try:
        return EmersConfig(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_emers_config(config_path: str | Path | None = None) -> EmersConfig:
    """Parse and validate an EMERS configuration file.

    :param config_path: Path to YAML configuration file, or None for defaults.
    :returns: Validated EmersConfig object.
    :raises ConfigError: If file cannot be read or config is invalid.
    """
    if config_path is None:
        return parse_emers_config({})
    config_path = Path(config_path)

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

    # An empty file means all defaults
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    config = parse_emers_config(raw_config)
    log.debug("Loaded configuration from %s", config_path)
    return config
