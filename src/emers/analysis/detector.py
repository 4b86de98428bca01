"""Event detection over price series and analyzed news."""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Collection, Iterable, Mapping, Sequence

import numpy as np

from emers.analysis.impact import ImpactScorer
from emers.analysis.indicators import atr, series_field, sma
from emers.clock import Clock, SystemClock
from emers.types import ArticleAnalysis, Bar, DetectedEvent, EmersConfig, EventType, Symbol

log = logging.getLogger(__name__)

TICKER_PATTERN = re.compile(r"(?<![A-Za-z])[A-Z]{1,5}(?![A-Za-z])")

PRICE_SOURCE = "price-series"


def resolve_symbol(analysis: ArticleAnalysis) -> Symbol:
    """Symbol of a news event.

    The article-provided symbol wins; otherwise the first ticker-shaped token
    in the title; otherwise the empty (market-wide) symbol.
    """
    article = analysis.article
    if article.symbol:
        return article.symbol
    match = TICKER_PATTERN.search(article.title)
    return Symbol(match.group(0) if match else "")


class EventDetector:
    """Turns indicator anomalies and news candidates into scored events.

    :param threshold_price: Minimum relative close-to-close move.
    :param threshold_volume: Minimum volume / volume-SMA ratio.
    :param threshold_atr: Minimum ATR ratio against ``atr_lookback`` bars earlier.
    :param news_confidence_cutoff: Minimum candidate confidence for news events.
    :param volume_window: Volume SMA window (the SMA includes the current bar).
    :param atr_period: ATR period.
    :param atr_lookback: Distance in bars between compared ATR values.
    :param scorer: Impact scorer; built from the thresholds if None.
    :param clock: Clock used to timestamp events.
    """

    def __init__(
        self,
        threshold_price: float = 0.05,
        threshold_volume: float = 3.0,
        threshold_atr: float = 2.0,
        news_confidence_cutoff: float = 0.6,
        volume_window: int = 20,
        atr_period: int = 14,
        atr_lookback: int = 20,
        scorer: ImpactScorer | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.threshold_price = threshold_price
        self.threshold_volume = threshold_volume
        self.threshold_atr = threshold_atr
        self.news_confidence_cutoff = news_confidence_cutoff
        self.volume_window = volume_window
        self.atr_period = atr_period
        self.atr_lookback = atr_lookback
        self.scorer = scorer or ImpactScorer(threshold_price, threshold_volume, threshold_atr)
        self.clock = clock or SystemClock()

    @classmethod
    def from_config(cls, config: EmersConfig, clock: Clock | None = None) -> "EventDetector":
        return cls(
            threshold_price=config.threshold_price,
            threshold_volume=config.threshold_volume,
            threshold_atr=config.threshold_atr,
            news_confidence_cutoff=config.news_confidence_cutoff,
            volume_window=config.volume_window,
            atr_period=config.atr_period,
            atr_lookback=config.atr_lookback,
            clock=clock,
        )

    # ------------------------------------------------------------------ price rules

    def detect_price_events(
        self,
        symbol: str,
        bars: Sequence[Bar],
        new_dates: Collection[dt.date] | None = None,
    ) -> list[DetectedEvent]:
        """Evaluate the price rules on every bar of a series.

        Events come out in bar-date order; within one bar the order is price
        move, volume spike, volatility spike. Rules whose indicator is still
        in warm-up are skipped.

        :param symbol: Ticker of the series.
        :param bars: Validated, date-ordered bars.
        :param new_dates: If given, only bars with these dates may emit events.
            Earlier bars still feed the indicators.
        """
        n = len(bars)
        if n < 2:
            return []
        close = series_field(bars, "close")
        volume = series_field(bars, "volume")
        volume_sma = sma(volume, self.volume_window) if n >= self.volume_window else None
        atr_values = atr(bars, self.atr_period)
        timestamp = self.clock.now()

        events: list[DetectedEvent] = []
        for i in range(1, n):
            bar = bars[i]
            if new_dates is not None and bar.date not in new_dates:
                continue
            candidates: list[tuple[EventType, float, str]] = []

            if close[i - 1] != 0:
                change = float(close[i] / close[i - 1] - 1.0)
                if change >= self.threshold_price:
                    candidates.append(
                        (EventType.PRICE_JUMP, change, f"{symbol} rose {change * 100:.2f}% to {bar.close:.2f}")
                    )
                elif change <= -self.threshold_price:
                    candidates.append(
                        (EventType.PRICE_DROP, change, f"{symbol} fell {-change * 100:.2f}% to {bar.close:.2f}")
                    )

            if volume_sma is not None and not np.isnan(volume_sma[i]) and volume_sma[i] > 0:
                ratio = float(volume[i] / volume_sma[i])
                if ratio >= self.threshold_volume:
                    candidates.append(
                        (
                            EventType.VOLUME_SPIKE,
                            ratio,
                            f"{symbol} volume {ratio:.2f}x its {self.volume_window}-day average",
                        )
                    )

            j = i - self.atr_lookback
            if j >= 0 and not np.isnan(atr_values[i]) and not np.isnan(atr_values[j]) and atr_values[j] > 0:
                ratio = float(atr_values[i] / atr_values[j])
                if ratio >= self.threshold_atr:
                    candidates.append(
                        (
                            EventType.VOLATILITY_SPIKE,
                            ratio,
                            f"{symbol} ATR({self.atr_period}) {ratio:.2f}x its value "
                            f"{self.atr_lookback} bars earlier",
                        )
                    )

            for event_type, magnitude, description in candidates:
                event = DetectedEvent(
                    symbol=Symbol(symbol),
                    date=bar.date,
                    type=event_type,
                    description=description,
                    magnitude=magnitude,
                    sentiment=_price_sentiment(event_type),
                    source=PRICE_SOURCE,
                    timestamp=timestamp,
                )
                events.append(self.scorer.apply(event))
                log.debug("%s %s on %s (magnitude %.4f)", symbol, event_type.value, bar.date, magnitude)
        return events

    # ------------------------------------------------------------------ news rules

    def detect_news_events(self, analyses: Iterable[ArticleAnalysis]) -> list[DetectedEvent]:
        """Emit one event per analyzed article above the confidence cutoff."""
        timestamp = self.clock.now()
        events: list[DetectedEvent] = []
        for analysis in analyses:
            if analysis.candidate_confidence < self.news_confidence_cutoff:
                continue
            article = analysis.article
            event = DetectedEvent(
                symbol=resolve_symbol(analysis),
                date=article.date,
                type=analysis.candidate_type,
                description=article.title,
                magnitude=analysis.candidate_confidence,
                sentiment=analysis.sentiment.score,
                source=article.source,
                url=article.url,
                timestamp=timestamp,
            )
            events.append(self.scorer.apply(event))
        return events

    def detect(
        self,
        series: Mapping[str, Sequence[Bar]],
        analyses: Iterable[ArticleAnalysis] = (),
        new_dates: Mapping[str, Collection[dt.date]] | None = None,
    ) -> list[DetectedEvent]:
        """Detect all events of one batch in append order.

        News events come first in input order, then price events merged
        across symbols by bar date (ties keep symbol input order).
        """
        events = self.detect_news_events(analyses)
        price_events: list[DetectedEvent] = []
        for symbol, bars in series.items():
            dates = None if new_dates is None else set(new_dates.get(symbol, ()))
            price_events.extend(self.detect_price_events(symbol, bars, dates))
        # sort is stable, so per-symbol rule order survives
        price_events.sort(key=lambda event: event.date)
        return events + price_events


def _price_sentiment(event_type: EventType) -> float:
    if event_type == EventType.PRICE_JUMP:
        return 0.7
    if event_type == EventType.PRICE_DROP:
        return -0.7
    if event_type == EventType.VOLATILITY_SPIKE:
        return -0.5
    return 0.0


__all__ = ["EventDetector", "resolve_symbol", "TICKER_PATTERN"]
