"""Configuration for the detect command.

Example config file (detect.yaml):

    symbols:
      - "AAPL"
      - "MSFT"
    date_range:
      start: "2024-01-01"
      end: "2024-07-01"
    price_source: "tiingo"
    price_params: {}
    news_source: "tiingo"   # Optional
    news_params:
      limit: 50
"""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any

import yaml

from emers.data.store import validate_symbol
from emers.exceptions import ConfigError, ParseError
from emers.types import DateRange, DetectConfig

# Valid fetcher names
VALID_PRICE_SOURCES = frozenset(["tiingo", "yahoo", "csv"])
VALID_NEWS_SOURCES = frozenset(["tiingo", "json"])


def _parse_date(value: str | dt.date) -> dt.date:
    """Parse a ``YYYY-MM-DD`` string or pass through date objects.

    :raises ConfigError: If parsing fails.
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value))
    except ValueError as e:
        raise ConfigError(f"Invalid date format: {value}") from e


def _params(raw_config: dict[str, Any], key: str) -> dict[str, Any]:
    params = raw_config.get(key) or {}
    if not isinstance(params, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return params


def load_detect_config(config_path: str | Path) -> DetectConfig:
    """Parse and validate a detect configuration file.

    :param config_path: Path to YAML configuration file.
    :returns: Validated DetectConfig object.
    :raises ConfigError: If file cannot be read or config is invalid.
    """
    config_path = Path(config_path)

    try:
        with open(config_path) as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Configuration must be a YAML mapping")

    for field in ("symbols", "date_range", "price_source"):
        if field not in raw_config:
            raise ConfigError(f"Missing required field: {field}")

    raw_symbols = raw_config["symbols"]
    if not isinstance(raw_symbols, list) or len(raw_symbols) == 0:
        raise ConfigError("'symbols' must be a non-empty list")
    try:
        symbols = [validate_symbol(str(s)) for s in raw_symbols]
    except ParseError as e:
        raise ConfigError(f"Invalid symbol: {e}") from e

    raw_date_range = raw_config["date_range"]
    if not isinstance(raw_date_range, dict):
        raise ConfigError("'date_range' must be a mapping with 'start' and 'end'")
    if "start" not in raw_date_range or "end" not in raw_date_range:
        raise ConfigError("'date_range' must contain 'start' and 'end'")
    start = _parse_date(raw_date_range["start"])
    end = _parse_date(raw_date_range["end"])
    if start >= end:
        raise ConfigError("'date_range.start' must be before 'date_range.end'")

    price_source = str(raw_config["price_source"]).lower()
    if price_source not in VALID_PRICE_SOURCES:
        raise ConfigError(
            f"Invalid price_source '{raw_config['price_source']}'. "
            f"Valid options: {sorted(VALID_PRICE_SOURCES)}"
        )

    news_source = raw_config.get("news_source")
    if news_source is not None:
        news_source = str(news_source).lower()
        if news_source not in VALID_NEWS_SOURCES:
            raise ConfigError(
                f"Invalid news_source '{raw_config['news_source']}'. "
                f"Valid options: {sorted(VALID_NEWS_SOURCES)}"
            )

    return DetectConfig(
        symbols=symbols,
        date_range=DateRange(start=start, end=end),
        price_source=price_source,
        price_params=_params(raw_config, "price_params"),
        news_source=news_source,
        news_params=_params(raw_config, "news_params"),
    )
