"""Tests for the batch pipeline."""

import threading
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from emers.analysis.detector import EventDetector
from emers.clock import FixedClock
from emers.data.sources import NewsFetcher, PriceFetcher
from emers.exceptions import DataSourceError, StorageError
from emers.pipeline import EventPipeline
from emers.storage.database import EventDatabase
from emers.types import Article, Bar, DateRange, EmersConfig, EventType, Symbol

START = date(2024, 1, 1)


def make_bars(closes: list[float], start: date = START) -> list[Bar]:
    return [
        Bar(date=start + timedelta(days=i), open=c, high=c + 1, low=c - 1, close=c, volume=1000.0)
        for i, c in enumerate(closes)
    ]


def merger_article(symbol: str | None = "ACME") -> Article:
    return Article(
        title="Acme agrees merger and acquisition deal",
        date=START,
        source="Newswire",
        url="https://example.com/m",
        symbol=Symbol(symbol) if symbol else None,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock.at(date(2024, 2, 1))


@pytest.fixture
def pipeline(tmp_path: Path, clock: FixedClock) -> EventPipeline:
    database = EventDatabase(tmp_path / "events.db", clock=clock)
    return EventPipeline(database, detector=EventDetector(clock=clock))


class TestProcessBatch:
    """Tests for a single batch."""

    def test_news_then_price_events_are_stored(self, pipeline: EventPipeline) -> None:
        """Both streams end up in the database, news first."""
        result = pipeline.process_batch({"ACME": make_bars([100, 100, 107])}, [merger_article()])

        assert [e.type for e in result.detected] == [EventType.MERGER_ACQUISITION, EventType.PRICE_JUMP]
        assert result.append.appended == 2
        assert [e.id for e in pipeline.database.load()] == [1, 2]
        assert len(result.analyses) == 1

    def test_replaying_a_batch_adds_nothing(self, pipeline: EventPipeline) -> None:
        """Bars already in the store do not emit again."""
        bars = make_bars([100, 100, 107])
        pipeline.process_batch({"ACME": bars})
        second = pipeline.process_batch({"ACME": bars})

        assert second.detected == []
        assert len(pipeline.database) == 1

    def test_earlier_bars_feed_later_batches(self, pipeline: EventPipeline) -> None:
        """A move across the batch boundary is detected on the new bar."""
        pipeline.process_batch({"ACME": make_bars([100, 100])})
        result = pipeline.process_batch({"ACME": make_bars([110], start=START + timedelta(days=2))})

        assert [(e.type, e.date) for e in result.detected] == [
            (EventType.PRICE_JUMP, START + timedelta(days=2))
        ]

    def test_invalid_bars_are_rejected_not_fatal(self, pipeline: EventPipeline) -> None:
        """Bad bars are counted and skipped."""
        bars = make_bars([100, 100, 107])
        bad = Bar(date=START + timedelta(days=5), open=1, high=2, low=1, close=5, volume=1)
        result = pipeline.process_batch({"ACME": bars + [bad], "BAD SYMBOL": bars})

        assert result.rejected_bars == 4
        assert [e.symbol for e in result.detected] == ["ACME"]

    def test_invalid_article_symbol_is_rejected(self, pipeline: EventPipeline) -> None:
        """Articles with a malformed symbol are skipped."""
        result = pipeline.process_batch({}, [merger_article("NOT A SYMBOL")])

        assert result.rejected_articles == 1
        assert result.detected == []

    def test_cancelled_batch_is_discarded(self, pipeline: EventPipeline) -> None:
        """Nothing is stored when the batch is cancelled."""
        cancel = threading.Event()
        cancel.set()
        result = pipeline.process_batch({"ACME": make_bars([100, 107])}, cancel=cancel)

        assert result.append.cancelled
        assert len(pipeline.database) == 0

    def test_cancelled_batch_can_be_replayed(self, pipeline: EventPipeline) -> None:
        """A cancelled batch leaves no bars behind, so a replay detects the jump."""
        bars = make_bars([100, 100, 107])
        cancel = threading.Event()
        cancel.set()
        pipeline.process_batch({"ACME": bars}, cancel=cancel)

        assert pipeline.store.series("ACME") == []

        result = pipeline.process_batch({"ACME": bars})

        assert [e.type for e in result.detected] == [EventType.PRICE_JUMP]
        assert [e.type for e in pipeline.database.load()] == [EventType.PRICE_JUMP]

    def test_failed_commit_rolls_back_store(self, pipeline: EventPipeline) -> None:
        """A storage failure keeps the earlier bars and drops the batch's own."""
        pipeline.process_batch({"ACME": make_bars([100, 100])})
        later = make_bars([107], start=START + timedelta(days=2))

        with patch("emers.storage.database.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                pipeline.process_batch({"ACME": later})

        assert [bar.close for bar in pipeline.store.series("ACME")] == [100, 100]

        result = pipeline.process_batch({"ACME": later})

        assert [(e.type, e.date) for e in result.detected] == [
            (EventType.PRICE_JUMP, START + timedelta(days=2))
        ]
        assert len(pipeline.database) == 1

    def test_assess_uses_stored_bars(self, pipeline: EventPipeline) -> None:
        """Assessments see the series held by the store."""
        closes = [100, 107, 108, 109, 110, 111, 117.7]
        result = pipeline.process_batch({"ACME": make_bars(closes)})
        assessment = pipeline.assess(result.detected[0])

        assert assessment.impact_score == 10
        assert assessment.abnormal_return == pytest.approx(0.1)

    def test_anomalies_in_stored_series(self, pipeline: EventPipeline) -> None:
        """The anomaly sweep runs over the bars held by the store."""
        bars = make_bars([100.0] * 30 + [110.0] * 10)
        bars[30] = bars[30].model_copy(update={"volume": 5000.0})
        pipeline.process_batch({"ACME": bars})

        assert pipeline.anomalies("ACME") == [START + timedelta(days=30)]
        assert pipeline.anomalies("NONE") == []


class TestRun:
    """Tests for the fetching driver."""

    def test_run_fetches_and_processes(self, pipeline: EventPipeline) -> None:
        """Fetched bars and news are processed as one batch."""
        prices = MagicMock(spec=PriceFetcher)
        prices.fetch.return_value = make_bars([100, 100, 107])
        news = MagicMock(spec=NewsFetcher)
        news.fetch.return_value = [merger_article()]
        date_range = DateRange(start=START, end=START + timedelta(days=3))

        result = pipeline.run(prices, news, [Symbol("ACME")], date_range)

        prices.fetch.assert_called_once_with("ACME", date_range)
        news.fetch.assert_called_once_with([Symbol("ACME")], date_range)
        assert len(result.detected) == 2

    def test_fetch_failure_skips_symbol(self, pipeline: EventPipeline) -> None:
        """A failing symbol does not stop the others."""
        prices = MagicMock(spec=PriceFetcher)
        prices.fetch.side_effect = [DataSourceError("down"), make_bars([100, 107])]
        date_range = DateRange(start=START, end=START + timedelta(days=2))

        result = pipeline.run(prices, None, [Symbol("AAA"), Symbol("BBB")], date_range)

        assert [e.symbol for e in result.detected] == ["BBB"]


def test_from_config(tmp_path: Path, clock: FixedClock) -> None:
    """The pipeline wires its collaborators from configuration."""
    config = EmersConfig(
        event_db_path=tmp_path / "e.db",
        event_db_backup_path=tmp_path / "e.db.bak",
        threshold_price=0.1,
        max_gap_days=5,
    )
    with EventPipeline.from_config(config, clock=clock) as pipeline:
        assert pipeline.detector.threshold_price == 0.1
        assert pipeline.store.max_gap_days == 5
        assert pipeline.database.path == tmp_path / "e.db"
        assert pipeline.process_batch({"ACME": make_bars([100, 107])}).detected == []
