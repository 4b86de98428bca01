"""Tests for the in-memory price series store."""

from datetime import date, timedelta

import pytest

from emers.data.store import (PriceSeriesStore, check_bar, sanitize_bars,
                              validate_symbol)
from emers.exceptions import InvalidBarError, ParseError
from emers.types import Bar

START = date(2024, 1, 1)


def make_bar(offset: int, close: float = 100.0, volume: float = 1000.0) -> Bar:
    return Bar(
        date=START + timedelta(days=offset),
        open=close,
        high=close + 1,
        low=close - 1,
        close=close,
        volume=volume,
    )


@pytest.fixture
def store() -> PriceSeriesStore:
    return PriceSeriesStore()


class TestValidation:
    """Tests for symbol and bar checks."""

    @pytest.mark.parametrize("symbol", ["AAPL", "BRK.B", "X" * 16])
    def test_valid_symbols(self, symbol: str) -> None:
        """Short printable ASCII symbols pass."""
        assert validate_symbol(symbol) == symbol

    @pytest.mark.parametrize("symbol", ["", "A B", "X" * 17, "ÄPPL", "A\tB"])
    def test_invalid_symbols(self, symbol: str) -> None:
        """Empty, spaced, long or non-ASCII symbols are rejected."""
        with pytest.raises(ParseError):
            validate_symbol(symbol)

    def test_check_bar_ranges(self) -> None:
        """Closes outside [low, high] and negative volumes are invalid."""
        check_bar(make_bar(0))
        with pytest.raises(InvalidBarError):
            check_bar(Bar(date=START, open=10, high=11, low=9, close=12, volume=1))
        with pytest.raises(InvalidBarError):
            check_bar(make_bar(0, volume=-1.0))
        with pytest.raises(InvalidBarError):
            check_bar(make_bar(0, close=float("nan")))

    def test_sanitize_splits_rejects(self) -> None:
        """Invalid and out-of-order bars are set aside with their error."""
        bad = make_bar(1, volume=-5.0)
        late = make_bar(0)
        valid, rejected = sanitize_bars([make_bar(0), bad, make_bar(2), late])

        assert [b.date for b in valid] == [START, START + timedelta(days=2)]
        assert [r[0] for r in rejected] == [bad, late]
        assert all(isinstance(r[1], InvalidBarError) for r in rejected)


class TestPut:
    """Tests for inserting series."""

    def test_put_returns_changed_dates(self, store: PriceSeriesStore) -> None:
        """All dates are new on first insert."""
        changed = store.put("ACME", [make_bar(0), make_bar(1)])
        assert changed == [START, START + timedelta(days=1)]

    def test_put_is_idempotent(self, store: PriceSeriesStore) -> None:
        """Replaying identical bars changes nothing."""
        bars = [make_bar(0), make_bar(1)]
        store.put("ACME", bars)

        assert store.put("ACME", bars) == []
        assert store.series("ACME") == bars

    def test_put_overwrites_and_merges(self, store: PriceSeriesStore) -> None:
        """Same-date bars are replaced and new dates merged in order."""
        store.put("ACME", [make_bar(0), make_bar(2)])
        changed = store.put("ACME", [make_bar(1), make_bar(2, close=105.0)])

        assert changed == [START + timedelta(days=1), START + timedelta(days=2)]
        assert [b.close for b in store.series("ACME")] == [100.0, 100.0, 105.0]

    def test_put_rejects_unordered_bars_atomically(self, store: PriceSeriesStore) -> None:
        """A bad batch leaves the stored series untouched."""
        store.put("ACME", [make_bar(0)])
        with pytest.raises(InvalidBarError):
            store.put("ACME", [make_bar(3), make_bar(2)])
        assert store.series("ACME") == [make_bar(0)]

    def test_put_rejects_invalid_bar(self, store: PriceSeriesStore) -> None:
        """Range violations are reported as InvalidBarError."""
        with pytest.raises(InvalidBarError):
            store.put("ACME", [make_bar(0, volume=-1.0)])
        assert store.symbols() == set()

    def test_put_rejects_bad_symbol(self, store: PriceSeriesStore) -> None:
        """Malformed symbols are a ParseError."""
        with pytest.raises(ParseError):
            store.put("BAD SYMBOL", [make_bar(0)])

    def test_gap_check(self) -> None:
        """Gaps above max_gap_days are rejected."""
        store = PriceSeriesStore(max_gap_days=4)
        store.put("ACME", [make_bar(0), make_bar(4)])
        with pytest.raises(InvalidBarError) as exc_info:
            store.put("ACME", [make_bar(10)])

        assert exc_info.value.context["gap_days"] == 6
        assert len(store.series("ACME")) == 2


class TestGet:
    """Tests for range queries."""

    def test_get_is_half_open(self, store: PriceSeriesStore) -> None:
        """from_date is included, to_date excluded."""
        store.put("ACME", [make_bar(i) for i in range(5)])
        bars = store.get("ACME", START + timedelta(days=1), START + timedelta(days=3))

        assert [b.date for b in bars] == [START + timedelta(days=1), START + timedelta(days=2)]

    def test_get_unknown_symbol_or_empty_range(self, store: PriceSeriesStore) -> None:
        """Unknown symbols and inverted ranges give no bars."""
        store.put("ACME", [make_bar(0)])

        assert store.get("OTHER", START, START + timedelta(days=5)) == []
        assert store.get("ACME", START + timedelta(days=5), START) == []

    def test_series_is_a_copy(self, store: PriceSeriesStore) -> None:
        """Mutating the returned list leaves the store intact."""
        store.put("ACME", [make_bar(0)])
        store.series("ACME").clear()
        assert len(store.series("ACME")) == 1


class TestSnapshot:
    """Tests for rolling the store back."""

    def test_restore_undoes_later_puts(self, store: PriceSeriesStore) -> None:
        """Overwrites, new bars and new symbols are all undone."""
        store.put("ACME", [make_bar(0), make_bar(1)])
        saved = store.snapshot()

        store.put("ACME", [make_bar(1, close=105.0), make_bar(2)])
        store.put("BETA", [make_bar(0)])
        store.restore(saved)

        assert [bar.close for bar in store.series("ACME")] == [100.0, 100.0]
        assert store.symbols() == {"ACME"}

    def test_snapshot_of_empty_store(self, store: PriceSeriesStore) -> None:
        """Restoring an empty snapshot clears the store."""
        saved = store.snapshot()
        store.put("ACME", [make_bar(0)])
        store.restore(saved)

        assert store.symbols() == set()
