"""Tests for core type definitions."""

from datetime import date

import pytest
from pydantic import ValidationError

from emers.types import (PRICE_EVENT_TYPES, Article, Bar, DatabaseStats,
                         DateRange, DetectedEvent, EmersConfig, EventType,
                         SentimentResult, Symbol)

# ---------------------------------------------------------------------------
# Basic Type Tests
# ---------------------------------------------------------------------------


def test_bar_creation_and_attributes() -> None:
    """Bar should store all OHLCV fields correctly."""
    bar = Bar(date=date(2024, 1, 2), open=1.0, high=2.0, low=0.5, close=1.5, volume=1234.0, adj_close=1.4)

    assert bar.date == date(2024, 1, 2)
    assert bar.open == 1.0
    assert bar.high == 2.0
    assert bar.low == 0.5
    assert bar.close == 1.5
    assert bar.volume == 1234.0
    assert bar.adj_close == 1.4


def test_bar_adj_close_defaults_to_close() -> None:
    """Missing adjusted close falls back to the close."""
    bar = Bar(date=date(2024, 1, 2), open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0)
    assert bar.adj_close == 1.5


def test_bar_is_immutable() -> None:
    """Bars cannot be changed once created."""
    bar = Bar(date=date(2024, 1, 2), open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0)
    with pytest.raises(ValidationError):
        bar.close = 3.0  # type: ignore[misc]


def test_date_range_is_half_open() -> None:
    """DateRange includes start and excludes end."""
    dr = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 3))

    assert dr.contains(date(2024, 1, 1))
    assert dr.contains(date(2024, 1, 2))
    assert not dr.contains(date(2024, 1, 3))


def test_article_symbol_is_optional() -> None:
    """Articles may come without a feed-provided symbol."""
    article = Article(title="Markets rally", date=date(2024, 1, 2))
    assert article.symbol is None
    assert article.body == ""


def test_sentiment_score_bounds_are_validated() -> None:
    """Sentiment scores outside [-1, 1] are rejected."""
    with pytest.raises(ValidationError):
        SentimentResult(score=1.5, confidence=0.5)


# ---------------------------------------------------------------------------
# Event Types
# ---------------------------------------------------------------------------


def test_event_type_codes_follow_declaration_order() -> None:
    """Type codes are positions in the declared enumeration."""
    assert EventType.PRICE_JUMP.code == 0
    assert EventType.VOLATILITY_SPIKE.code == 3
    assert EventType.UNKNOWN.code == 14
    assert [EventType.from_code(i) for i in range(15)] == list(EventType)


def test_event_type_from_code_rejects_out_of_range() -> None:
    """Unknown codes raise ValueError."""
    with pytest.raises(ValueError):
        EventType.from_code(15)


def test_price_event_types() -> None:
    """The four anomaly types are price events."""
    assert PRICE_EVENT_TYPES == {
        EventType.PRICE_JUMP,
        EventType.PRICE_DROP,
        EventType.VOLUME_SPIKE,
        EventType.VOLATILITY_SPIKE,
    }
    assert EventType.PRICE_DROP.is_price_event
    assert not EventType.IPO.is_price_event


def test_detected_event_impact_range_is_validated() -> None:
    """Impact scores must stay in [-10, 10]."""
    with pytest.raises(ValidationError):
        DetectedEvent(symbol=Symbol("AAPL"), date=date(2024, 1, 2), type=EventType.IPO,
                      magnitude=0.7, impact_score=11)


def test_detected_event_sentiment_has_single_precision() -> None:
    """Sentiment is kept at the precision it is stored with."""
    event = DetectedEvent(symbol=Symbol("AAPL"), date=date(2024, 1, 2), type=EventType.IPO,
                          magnitude=0.7, sentiment=0.1)
    assert event.sentiment != 0.1
    assert event.sentiment == pytest.approx(0.1, rel=1e-7)


def test_detected_event_dedup_key() -> None:
    """Duplicates collapse on symbol, date and type."""
    event = DetectedEvent(symbol=Symbol("AAPL"), date=date(2024, 1, 2), type=EventType.PRICE_JUMP,
                          magnitude=0.07)
    assert event.dedup_key == ("AAPL", date(2024, 1, 2), EventType.PRICE_JUMP)


def test_database_stats_optional_dates() -> None:
    """Empty databases have no oldest/newest date."""
    stats = DatabaseStats(total=0, per_type_count={}, last_month_count=0, last_year_count=0)
    assert stats.oldest_date is None
    assert stats.newest_date is None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_emers_config_defaults() -> None:
    """Configuration defaults match the documented values."""
    config = EmersConfig()

    assert str(config.event_db_path) == "events.db"
    assert str(config.event_db_backup_path) == "events.db.bak"
    assert config.threshold_price == 0.05
    assert config.threshold_volume == 3.0
    assert config.threshold_atr == 2.0
    assert config.news_confidence_cutoff == 0.6
    assert config.positive_words is None
    assert config.max_gap_days is None


def test_emers_config_rejects_non_positive_threshold() -> None:
    """Thresholds must be positive."""
    with pytest.raises(ValidationError):
        EmersConfig(threshold_price=0.0)
