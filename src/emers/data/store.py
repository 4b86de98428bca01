"""In-memory, symbol-keyed store of daily bar series."""

from __future__ import annotations

import datetime as dt
import logging
import math
from bisect import bisect_left
from operator import attrgetter
from typing import Iterable, Sequence

from emers.exceptions import InvalidBarError, ParseError
from emers.types import Bar, Symbol

log = logging.getLogger(__name__)

MAX_SYMBOL_BYTES = 16

_bar_date = attrgetter("date")


def validate_symbol(symbol: str) -> Symbol:
    """Check that ``symbol`` is short printable ASCII.

    :raises ParseError: If the symbol is empty, too long, or not printable ASCII.
    """
    if not symbol:
        raise ParseError("Symbol must not be empty")
    if not symbol.isascii() or not symbol.isprintable() or any(ch.isspace() for ch in symbol):
        raise ParseError(f"Symbol must be printable ASCII without spaces: {symbol!r}", symbol=symbol)
    if len(symbol) > MAX_SYMBOL_BYTES:
        raise ParseError(
            f"Symbol longer than {MAX_SYMBOL_BYTES} bytes: {symbol!r}", symbol=symbol
        )
    return Symbol(symbol)


def check_bar(bar: Bar) -> None:
    """Check the range invariants of a single bar.

    :raises InvalidBarError: If a value is not finite, the prices are not
        bracketed by ``low`` and ``high``, or the volume is negative.
    """
    values = (bar.open, bar.high, bar.low, bar.close, bar.volume, bar.adj_close)
    if not all(math.isfinite(value) for value in values):
        raise InvalidBarError(f"Non-finite value in bar {bar.date}", date=bar.date.isoformat())
    if not (bar.low <= bar.open <= bar.high and bar.low <= bar.close <= bar.high):
        raise InvalidBarError(
            f"Bar {bar.date} prices outside [low, high]",
            date=bar.date.isoformat(),
            low=bar.low,
            high=bar.high,
        )
    if bar.volume < 0:
        raise InvalidBarError(f"Negative volume in bar {bar.date}", date=bar.date.isoformat())


def sanitize_bars(bars: Iterable[Bar]) -> tuple[list[Bar], list[tuple[Bar, InvalidBarError]]]:
    """Split bars into a valid, strictly date-ordered list and the rejects.

    A bar is rejected if it fails :func:`check_bar` or is not dated after the
    last accepted bar.
    """
    valid: list[Bar] = []
    rejected: list[tuple[Bar, InvalidBarError]] = []
    for bar in bars:
        try:
            check_bar(bar)
            if valid and bar.date <= valid[-1].date:
                raise InvalidBarError(
                    f"Bar {bar.date} is not after {valid[-1].date}",
                    date=bar.date.isoformat(),
                    previous=valid[-1].date.isoformat(),
                )
        except InvalidBarError as exc:
            rejected.append((bar, exc))
            continue
        valid.append(bar)
    return valid, rejected


class PriceSeriesStore:
    """Per-symbol ordered bar series.

    The store is a scratchpad owned by one processing driver; it is not
    thread-safe and never persists anything.

    :param max_gap_days: Largest allowed calendar-day gap between consecutive
        bars, or None to leave gaps unchecked.
    """

    def __init__(self, max_gap_days: int | None = None) -> None:
        self.max_gap_days = max_gap_days
        self._series: dict[Symbol, list[Bar]] = {}

    def put(self, symbol: str, bars: Sequence[Bar]) -> list[dt.date]:
        """Insert or overwrite bars of a series.

        Bars whose date is already present replace the stored bar, so
        replaying the same input is idempotent. The whole call is atomic: on
        error the stored series is unchanged.

        :param symbol: Series key.
        :param bars: Bars with strictly increasing dates.
        :returns: Dates whose bar was added or changed, in date order.
        :raises ParseError: If the symbol is malformed.
        :raises InvalidBarError: If any bar breaks the ordering, range or gap invariants.
        """
        key = validate_symbol(symbol)
        previous: Bar | None = None
        for bar in bars:
            check_bar(bar)
            if previous is not None and bar.date <= previous.date:
                raise InvalidBarError(
                    f"{key}: bar {bar.date} is not after {previous.date}",
                    symbol=key,
                    date=bar.date.isoformat(),
                )
            previous = bar

        merged = {bar.date: bar for bar in self._series.get(key, ())}
        changed = [bar.date for bar in bars if merged.get(bar.date) != bar]
        merged.update((bar.date, bar) for bar in bars)
        ordered = [merged[day] for day in sorted(merged)]
        self._check_gaps(key, ordered)

        self._series[key] = ordered
        log.debug("%s: %d bars stored, %d new or changed", key, len(ordered), len(changed))
        return changed

    def get(self, symbol: str, from_date: dt.date, to_date: dt.date) -> list[Bar]:
        """Bars dated in ``[from_date, to_date)``; empty for an unknown symbol."""
        bars = self._series.get(Symbol(symbol), [])
        lo = bisect_left(bars, from_date, key=_bar_date)
        hi = bisect_left(bars, to_date, key=_bar_date)
        return bars[lo:max(lo, hi)]

    def series(self, symbol: str) -> list[Bar]:
        """Full series of ``symbol`` (a copy)."""
        return list(self._series.get(Symbol(symbol), []))

    def symbols(self) -> set[Symbol]:
        return set(self._series)

    def snapshot(self) -> dict[Symbol, list[Bar]]:
        """Current contents, for a later :meth:`restore`.

        Series lists are replaced rather than mutated by :meth:`put`, so a
        shallow copy of the table is enough.
        """
        return dict(self._series)

    def restore(self, snapshot: dict[Symbol, list[Bar]]) -> None:
        """Roll the store back to a :meth:`snapshot`."""
        self._series = dict(snapshot)
        log.debug("Store rolled back to %d series", len(self._series))

    def _check_gaps(self, symbol: Symbol, bars: Sequence[Bar]) -> None:
        if self.max_gap_days is None:
            return
        for before, after in zip(bars, bars[1:]):
            gap = (after.date - before.date).days
            if gap > self.max_gap_days:
                raise InvalidBarError(
                    f"{symbol}: {gap}-day gap between {before.date} and {after.date}",
                    symbol=symbol,
                    gap_days=gap,
                    max_gap_days=self.max_gap_days,
                )


__all__ = ["PriceSeriesStore", "validate_symbol", "check_bar", "sanitize_bars"]
