"""Batch driver: ingest bars and news, detect events, persist them."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Iterable, Mapping, Sequence

from emers.analysis.detector import EventDetector
from emers.analysis.impact import ImpactScorer
from emers.analysis.mining import detect_anomalies
from emers.analysis.text import TextAnalyzer
from emers.clock import Clock
from emers.data.sources import NewsFetcher, PriceFetcher
from emers.data.store import PriceSeriesStore, sanitize_bars, validate_symbol
from emers.exceptions import DataSourceError, InvalidBarError, ParseError, StorageError
from emers.storage.database import EventDatabase
from emers.types import (
    Article,
    Bar,
    BatchResult,
    DateRange,
    DetectedEvent,
    EmersConfig,
    ImpactAssessment,
    Symbol,
)

log = logging.getLogger(__name__)


class EventPipeline:
    """Turns prepared price series and articles into stored events.

    The pipeline owns its :class:`PriceSeriesStore`; bars from earlier
    batches stay in the store and feed the indicators of later ones, but only
    bars new in a batch can emit price events.

    :param database: Event database that receives the detected events.
    :param detector: Event detector.
    :param analyzer: Text analyzer for the news stream.
    :param store: Price series store (a fresh one if None).
    """

    def __init__(
        self,
        database: EventDatabase,
        detector: EventDetector | None = None,
        analyzer: TextAnalyzer | None = None,
        store: PriceSeriesStore | None = None,
    ) -> None:
        self.database = database
        self.detector = detector or EventDetector()
        self.analyzer = analyzer or TextAnalyzer()
        self.store = store or PriceSeriesStore()

    @classmethod
    def from_config(cls, config: EmersConfig, clock: Clock | None = None) -> "EventPipeline":
        """Build the database, detector, analyzer and store from configuration."""
        return cls(
            database=EventDatabase.from_config(config, clock=clock),
            detector=EventDetector.from_config(config, clock=clock),
            analyzer=TextAnalyzer(
                positive_words=config.positive_words,
                negative_words=config.negative_words,
                max_entities=config.max_entities,
            ),
            store=PriceSeriesStore(max_gap_days=config.max_gap_days),
        )

    @property
    def scorer(self) -> ImpactScorer:
        return self.detector.scorer

    def close(self) -> None:
        self.database.close()

    def __enter__(self) -> "EventPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------ ingest

    def _ingest_series(
        self, series: Mapping[str, Sequence[Bar]]
    ) -> tuple[dict[str, list[dt.date]], int]:
        new_dates: dict[str, list[dt.date]] = {}
        rejected = 0
        for symbol, bars in series.items():
            try:
                validate_symbol(symbol)
            except ParseError as e:
                log.warning("Rejected series %r: %s", symbol, e.message)
                rejected += len(bars)
                continue
            valid, bad = sanitize_bars(bars)
            for bar, error in bad:
                log.warning("Rejected %s bar %s: %s", symbol, bar.date, error.message)
            rejected += len(bad)
            try:
                new_dates[symbol] = self.store.put(symbol, valid)
            except InvalidBarError as e:
                log.warning("Rejected %d %s bars: %s", len(valid), symbol, e.message)
                rejected += len(valid)
        return new_dates, rejected

    def _accept_articles(self, articles: Iterable[Article]) -> tuple[list[Article], int]:
        accepted: list[Article] = []
        rejected = 0
        for article in articles:
            if article.symbol:
                try:
                    validate_symbol(article.symbol)
                except ParseError as e:
                    log.warning("Rejected article %r: %s", article.title, e.message)
                    rejected += 1
                    continue
            accepted.append(article)
        return accepted, rejected

    # ------------------------------------------------------------------ batches

    def process_batch(
        self,
        series: Mapping[str, Sequence[Bar]],
        articles: Iterable[Article] = (),
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Run one batch through ingest, analysis, detection and storage.

        News events are appended first in input order, then price events in
        bar-date order. The append is all-or-nothing; a set ``cancel`` event
        discards the batch. The bars of a discarded or failed batch are
        dropped from the store again, so replaying it detects the same events.

        :raises StorageError: If the database commit fails.
        """
        saved = self.store.snapshot()
        new_dates, rejected_bars = self._ingest_series(series)
        accepted, rejected_articles = self._accept_articles(articles)

        analyses = self.analyzer.analyze_many(accepted)
        full_series = {symbol: self.store.series(symbol) for symbol in new_dates}
        detected = self.detector.detect(full_series, analyses, new_dates)
        try:
            append = self.database.append_many(detected, cancel=cancel)
        except StorageError:
            self.store.restore(saved)
            raise
        if append.cancelled:
            self.store.restore(saved)
            log.info("Batch cancelled; %d detected events discarded", len(detected))

        log.info(
            "Batch: %d events detected (%d new, %d updated, %d duplicates), "
            "%d bars and %d articles rejected",
            len(detected),
            append.appended,
            append.updated,
            append.dropped,
            rejected_bars,
            rejected_articles,
        )
        return BatchResult(
            detected=detected,
            append=append,
            analyses=analyses,
            rejected_bars=rejected_bars,
            rejected_articles=rejected_articles,
        )

    def run(
        self,
        price_fetcher: PriceFetcher | None,
        news_fetcher: NewsFetcher | None,
        symbols: Sequence[Symbol],
        date_range: DateRange,
        cancel: threading.Event | None = None,
    ) -> BatchResult:
        """Fetch prices and news for ``symbols`` and process them as one batch.

        A fetch failure skips the affected symbol (or the news) and is logged.
        """
        series: dict[str, list[Bar]] = {}
        if price_fetcher is not None:
            for symbol in symbols:
                try:
                    series[symbol] = price_fetcher.fetch(symbol, date_range)
                except (DataSourceError, ParseError) as e:
                    log.warning("Skipping prices for %s: %s", symbol, e.message)

        articles: list[Article] = []
        if news_fetcher is not None:
            try:
                articles = news_fetcher.fetch(symbols, date_range)
            except (DataSourceError, ParseError) as e:
                log.warning("Skipping news: %s", e.message)

        return self.process_batch(series, articles, cancel=cancel)

    def assess(self, event: DetectedEvent) -> ImpactAssessment:
        """Impact assessment of ``event`` against the bars held in the store."""
        return self.scorer.assess(event, self.store.series(event.symbol) if event.symbol else [])

    def anomalies(self, symbol: str, max_anomalies: int | None = None) -> list[dt.date]:
        """Dates of the stored bars of ``symbol`` that stand out from their trailing window."""
        bars = self.store.series(symbol)
        return [bars[i].date for i in detect_anomalies(bars, max_anomalies=max_anomalies)]


__all__ = ["EventPipeline"]
