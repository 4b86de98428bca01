"""Core type definitions for EMERS.

All data models use Pydantic BaseModel for automatic validation, JSON
serialization, and better error messages.
"""

from __future__ import annotations

import datetime as dt
import struct
from enum import Enum
from pathlib import Path
from typing import Any, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Type alias for domain-specific identifiers
Symbol = NewType("Symbol", str)


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class FrozenModel(BaseModel):
    """Base model with frozen (immutable) configuration."""

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Date Types
# ---------------------------------------------------------------------------


class DateRange(FrozenModel):
    """Inclusive start, exclusive end range of calendar days.

    :param start: First day of the range (inclusive).
    :param end: Day after the last day of the range (exclusive).
    """

    start: dt.date
    end: dt.date

    def contains(self, day: dt.date) -> bool:
        """Return True if ``day`` falls inside the half-open range."""
        return self.start <= day < self.end


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


class Bar(FrozenModel):
    """One daily OHLCV observation.

    Range invariants (``low <= open, close <= high``, ``volume >= 0``, finite
    values) are enforced when bars are inserted into a
    :class:`~emers.data.store.PriceSeriesStore`, not at construction, so
    upstream feeds can hand over malformed bars for rejection.

    :param date: Trading day of the bar.
    :param open: Opening price.
    :param high: Highest price of the day.
    :param low: Lowest price of the day.
    :param close: Closing price.
    :param volume: Traded volume.
    :param adj_close: Split/dividend adjusted close (defaults to ``close``).
    """

    date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: float
    adj_close: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _default_adj_close(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("adj_close") is None and "close" in data:
            data = {**data, "adj_close": data["close"]}
        return data


# ---------------------------------------------------------------------------
# News Types
# ---------------------------------------------------------------------------


class Article(FrozenModel):
    """Free-text news article as delivered by a news feed.

    :param title: Headline.
    :param source: Publisher name.
    :param url: Link to the article.
    :param date: Publication day.
    :param body: Article text (description or content).
    :param symbol: Ticker the feed associated with the article, if any.
    """

    title: str
    source: str = ""
    url: str = ""
    date: dt.date
    body: str = ""
    symbol: Symbol | None = None


class SentimentResult(FrozenModel):
    """Bag-of-words sentiment of a piece of text.

    :param score: Polarity in ``[-1, 1]``.
    :param confidence: Confidence in ``[0, 1]``.
    :param keywords: Up to ten polarity words found, in first-seen order.
    """

    score: float = Field(ge=-1.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    keywords: list[str] = Field(default_factory=list)


class EntityKind(str, Enum):
    """Kind of a tagged named entity."""

    PERSON = "PERSON"
    ORG = "ORG"
    LOCATION = "LOCATION"


class NamedEntity(FrozenModel):
    """A token tagged by the entity heuristic.

    :param text: Token text as it appears in the article.
    :param kind: Entity kind.
    """

    text: str
    kind: EntityKind


# ---------------------------------------------------------------------------
# Event Types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """Closed set of market event types.

    Declaration order is significant: it breaks classification ties and its
    position is the ``u8`` type code in the database file.
    """

    PRICE_JUMP = "PriceJump"
    PRICE_DROP = "PriceDrop"
    VOLUME_SPIKE = "VolumeSpike"
    VOLATILITY_SPIKE = "VolatilitySpike"
    EARNINGS_ANNOUNCEMENT = "EarningsAnnouncement"
    DIVIDEND_ANNOUNCEMENT = "DividendAnnouncement"
    MERGER_ACQUISITION = "MergerAcquisition"
    LEADERSHIP_CHANGE = "LeadershipChange"
    CORPORATE_SCANDAL = "CorporateScandal"
    IPO = "IPO"
    LAYOFFS = "Layoffs"
    PRODUCT_LAUNCH = "ProductLaunch"
    PARTNERSHIP = "Partnership"
    REGULATORY_CHANGE = "RegulatoryChange"
    UNKNOWN = "Unknown"

    @property
    def code(self) -> int:
        """Numeric code used in the on-disk record."""
        return _EVENT_TYPE_ORDER.index(self)

    @classmethod
    def from_code(cls, code: int) -> EventType:
        """Look up an event type by its on-disk code.

        :raises ValueError: If the code is out of range.
        """
        if not 0 <= code < len(_EVENT_TYPE_ORDER):
            raise ValueError(f"Unknown event type code: {code}")
        return _EVENT_TYPE_ORDER[code]

    @property
    def is_price_event(self) -> bool:
        return self in PRICE_EVENT_TYPES


_EVENT_TYPE_ORDER: tuple[EventType, ...] = tuple(EventType)

PRICE_EVENT_TYPES = frozenset(
    {
        EventType.PRICE_JUMP,
        EventType.PRICE_DROP,
        EventType.VOLUME_SPIKE,
        EventType.VOLATILITY_SPIKE,
    }
)


class ArticleAnalysis(FrozenModel):
    """An article together with everything the text analyzer derived from it.

    :param article: The analyzed article.
    :param sentiment: Sentiment of title and body.
    :param entities: Tagged entities, in text order.
    :param candidate_type: Most likely corporate event type.
    :param candidate_confidence: Confidence of ``candidate_type`` in ``[0, 1]``.
    """

    article: Article
    sentiment: SentimentResult
    entities: list[NamedEntity] = Field(default_factory=list)
    candidate_type: EventType = EventType.UNKNOWN
    candidate_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class DetectedEvent(FrozenModel):
    """A typed, scored market event.

    :param id: Database-assigned identifier (0 until appended).
    :param symbol: Affected ticker (empty for market-wide news).
    :param date: Day of the event.
    :param type: Event type.
    :param description: Human-readable description.
    :param magnitude: Rule-specific magnitude (percent change, ratio or confidence).
    :param sentiment: Sentiment in ``[-1, 1]``.
    :param impact_score: Impact in ``[-10, 10]``.
    :param source: Producer of the event (news publisher or detector rule).
    :param url: Link to the originating article, if any.
    :param timestamp: Detection time as Unix epoch seconds.
    """

    id: int = 0
    symbol: Symbol
    date: dt.date
    type: EventType
    description: str = ""
    magnitude: float
    sentiment: float = Field(default=0.0, ge=-1.0, le=1.0)
    impact_score: int = Field(default=0, ge=-10, le=10)
    source: str = ""
    url: str = ""
    timestamp: int = 0

    @field_validator("sentiment")
    @classmethod
    def _single_precision(cls, value: float) -> float:
        # Sentiment is stored as f32; keep memory and disk values identical.
        return struct.unpack("<f", struct.pack("<f", value))[0]

    @property
    def dedup_key(self) -> tuple[str, dt.date, EventType]:
        """Key under which logical duplicates collapse."""
        return (str(self.symbol), self.date, self.type)


class EventSeverity(str, Enum):
    """Severity bucket derived from the impact score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ImpactAssessment(FrozenModel):
    """Full impact analysis of one event.

    :param event: The assessed event.
    :param impact_score: Impact in ``[-10, 10]``.
    :param severity: Severity bucket.
    :param market_impact: Impact normalized to ``[-1, 1]``.
    :param abnormal_return: Return over the post-event window.
    :param volatility_change: Relative change in return volatility.
    :param predicted_volatility: EWMA volatility of the log returns up to the event.
    :param affected_sectors: Sectors mentioned by the event text.
    :param duration_estimate: Expected duration of the effect in days.
    :param recommendation: Defensive strategy text.
    """

    event: DetectedEvent
    impact_score: int = Field(ge=-10, le=10)
    severity: EventSeverity
    market_impact: float
    abnormal_return: float = 0.0
    volatility_change: float = 0.0
    predicted_volatility: float = 0.0
    affected_sectors: list[str] = Field(default_factory=list)
    duration_estimate: int = 1
    recommendation: str = ""


# ---------------------------------------------------------------------------
# Database Types
# ---------------------------------------------------------------------------


class DatabaseStats(FrozenModel):
    """Summary of the event database contents.

    :param total: Number of stored events.
    :param per_type_count: Event count for every event type.
    :param last_month_count: Events dated from the same day last month up to today.
    :param last_year_count: Events dated from the same day last year up to today.
    :param oldest_date: Earliest event date, or None if empty.
    :param newest_date: Latest event date, or None if empty.
    """

    total: int
    per_type_count: dict[EventType, int]
    last_month_count: int
    last_year_count: int
    oldest_date: dt.date | None = None
    newest_date: dt.date | None = None


class AppendResult(FrozenModel):
    """Outcome of appending a batch of events.

    :param appended: Events stored as new records.
    :param updated: Existing records overwritten by a larger magnitude.
    :param dropped: Duplicates discarded.
    :param cancelled: True if the batch was cancelled before commit.
    :param events: Committed records (new and overwritten) with their ids.
    """

    appended: int = 0
    updated: int = 0
    dropped: int = 0
    cancelled: bool = False
    events: list[DetectedEvent] = Field(default_factory=list)


class BatchResult(FrozenModel):
    """Outcome of one pipeline batch.

    :param detected: Events produced by the detector, in append order.
    :param append: Result of committing them to the database.
    :param analyses: Text analysis of every accepted article.
    :param rejected_bars: Number of bars rejected on ingest.
    :param rejected_articles: Number of articles rejected on ingest.
    """

    detected: list[DetectedEvent] = Field(default_factory=list)
    append: AppendResult = Field(default_factory=AppendResult)
    analyses: list[ArticleAnalysis] = Field(default_factory=list)
    rejected_bars: int = 0
    rejected_articles: int = 0


# ---------------------------------------------------------------------------
# Configuration Types
# ---------------------------------------------------------------------------


class EmersConfig(FrozenModel):
    """Runtime configuration.

    :param event_db_path: Primary database file.
    :param event_db_backup_path: Backup database file.
    :param threshold_price: Relative close-to-close move for price events.
    :param threshold_volume: Volume / volume SMA ratio for volume spikes.
    :param threshold_atr: ATR ratio for volatility spikes.
    :param news_confidence_cutoff: Minimum candidate confidence for news events.
    :param positive_words: Positive vocabulary, or None for the built-in list.
    :param negative_words: Negative vocabulary, or None for the built-in list.
    :param log_level: Logging level.
    :param max_gap_days: Largest allowed gap between consecutive bars (None = unchecked).
    :param max_entities: Maximum entities tagged per article.
    :param volume_window: Volume SMA window for volume spikes.
    :param atr_period: ATR period for volatility spikes.
    :param atr_lookback: Number of bars between compared ATR values.
    :param tiingo_api_key: API key for the Tiingo collaborators.
    """

    event_db_path: Path = Path("./events.db")
    event_db_backup_path: Path = Path("./events.db.bak")
    threshold_price: float = Field(default=0.05, gt=0)
    threshold_volume: float = Field(default=3.0, gt=0)
    threshold_atr: float = Field(default=2.0, gt=0)
    news_confidence_cutoff: float = Field(default=0.6, ge=0.0, le=1.0)
    positive_words: list[str] | None = None
    negative_words: list[str] | None = None
    log_level: str = "INFO"
    max_gap_days: int | None = None
    max_entities: int = 20
    volume_window: int = 20
    atr_period: int = 14
    atr_lookback: int = 20
    tiingo_api_key: str | None = None


class DetectConfig(FrozenModel):
    """Configuration for a detect run.

    :param symbols: Tickers to fetch prices for (and filter news by).
    :param date_range: Days to fetch.
    :param price_source: Price fetcher name ("tiingo", "yahoo", "csv").
    :param price_params: Parameters for the price fetcher.
    :param news_source: News fetcher name ("tiingo", "json"), or None to skip news.
    :param news_params: Parameters for the news fetcher.
    """

    symbols: list[Symbol]
    date_range: DateRange
    price_source: str
    price_params: dict[str, Any] = Field(default_factory=dict)
    news_source: str | None = None
    news_params: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

__all__ = [
    # Type aliases
    "Symbol",
    # Base models
    "FrozenModel",
    # Date
    "DateRange",
    # Market data
    "Bar",
    # News
    "Article",
    "SentimentResult",
    "EntityKind",
    "NamedEntity",
    "ArticleAnalysis",
    # Events
    "EventType",
    "PRICE_EVENT_TYPES",
    "DetectedEvent",
    "EventSeverity",
    "ImpactAssessment",
    # Database
    "DatabaseStats",
    "AppendResult",
    "BatchResult",
    # Configuration
    "EmersConfig",
    "DetectConfig",
]
