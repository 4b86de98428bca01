"""Technical indicator kernels.

Every kernel is a pure function of a bar series (or a plain numeric series)
and returns a float64 array aligned with its input: ``out[i]`` belongs to
``bars[i]``. Leading positions for which the indicator is not yet defined
(the warm-up) hold ``NaN``.

Warm-up lengths:

- SMA, EMA, Bollinger Bands: ``period - 1``
- RSI, ATR: ``period``
- MACD: ``slow - 1 + signal - 1`` for all three lines

When the series is shorter than the period the result is entirely warm-up.
Pass ``strict=True`` to get an :class:`~emers.exceptions.InsufficientDataError`
instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from numpy.typing import ArrayLike, NDArray

from emers.exceptions import InsufficientDataError
from emers.types import Bar

FloatArray = NDArray[np.float64]
SeriesLike = Union[Sequence[Bar], ArrayLike]


@dataclass(frozen=True, slots=True)
class MACDResult:
    """Aligned MACD, signal and histogram lines."""

    macd: FloatArray
    signal: FloatArray
    histogram: FloatArray


@dataclass(frozen=True, slots=True)
class BollingerBands:
    """Aligned upper, middle and lower Bollinger bands."""

    upper: FloatArray
    middle: FloatArray
    lower: FloatArray


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def series_field(data: SeriesLike, field: str = "close") -> FloatArray:
    """Return one field of a bar series (or a numeric series) as a float array.

    :param data: Sequence of :class:`Bar` or anything numpy can convert.
    :param field: Bar attribute to extract when ``data`` holds bars.
    """
    if isinstance(data, np.ndarray):
        return data.astype(np.float64, copy=False)
    items = list(data)  # type: ignore[arg-type]
    if items and isinstance(items[0], Bar):
        return np.array([getattr(bar, field) for bar in items], dtype=np.float64)
    return np.asarray(items, dtype=np.float64)


def warmup_length(name: str, period: int, signal: int = 0) -> int:
    """Number of leading warm-up positions for an indicator.

    :param name: One of ``sma``, ``ema``, ``bollinger``, ``rsi``, ``atr``, ``macd``.
    :param period: Indicator period (the slow period for MACD).
    :param signal: Signal period, MACD only.
    """
    if name in ("sma", "ema", "bollinger"):
        return period - 1
    if name in ("rsi", "atr"):
        return period
    if name == "macd":
        return period - 1 + signal - 1
    raise ValueError(f"Unknown indicator: {name}")


def _check_period(period: int) -> None:
    if period < 2:
        raise ValueError(f"Indicator period must be >= 2, got {period}")


def _require(n: int, needed: int, name: str, period: int, strict: bool) -> bool:
    """Return True if ``n`` observations are enough; raise in strict mode."""
    if n >= needed:
        return True
    if strict:
        raise InsufficientDataError(
            f"{name} needs {needed} observations, got {n}",
            indicator=name,
            period=period,
            available=n,
        )
    return False


def _empty(n: int) -> FloatArray:
    return np.full(n, np.nan, dtype=np.float64)


def _wilder(values: FloatArray, period: int) -> FloatArray:
    """Wilder-smooth ``values[1:]``, seeding at index ``period``.

    ``values[0]`` is ignored (it has no predecessor). The seed is the simple
    mean of ``values[1 : period + 1]``.
    """
    n = len(values)
    out = _empty(n)
    if n <= period:
        return out
    avg = float(np.mean(values[1 : period + 1]))
    out[period] = avg
    for i in range(period + 1, n):
        avg = (avg * (period - 1) + values[i]) / period
        out[i] = avg
    return out


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------


def sma(data: SeriesLike, period: int, field: str = "close", strict: bool = False) -> FloatArray:
    """Simple moving average.

    ``out[i] = mean(x[i - period + 1 : i + 1])`` for ``i >= period - 1``.
    """
    _check_period(period)
    values = series_field(data, field)
    n = len(values)
    out = _empty(n)
    if not _require(n, period, "sma", period, strict):
        return out
    out[period - 1 :] = sliding_window_view(values, period).mean(axis=1)
    return out


def ema(data: SeriesLike, period: int, field: str = "close", strict: bool = False) -> FloatArray:
    """Exponential moving average seeded with the SMA of the first window.

    Leading NaNs in the input (for instance an upstream warm-up) are skipped:
    the EMA starts ``period - 1`` positions after the first defined value.
    """
    _check_period(period)
    values = series_field(data, field)
    n = len(values)
    out = _empty(n)

    defined = np.flatnonzero(~np.isnan(values))
    start = int(defined[0]) if len(defined) else n
    if not _require(n - start, period, "ema", period, strict):
        return out

    alpha = 2.0 / (period + 1)
    seed_idx = start + period - 1
    prev = float(np.mean(values[start : seed_idx + 1]))
    out[seed_idx] = prev
    for i in range(seed_idx + 1, n):
        prev = alpha * values[i] + (1.0 - alpha) * prev
        out[i] = prev
    return out


def rsi(data: SeriesLike, period: int = 14, field: str = "close", strict: bool = False) -> FloatArray:
    """Relative Strength Index with Wilder smoothing.

    RSI is 100 whenever the average loss is zero.
    """
    _check_period(period)
    values = series_field(data, field)
    n = len(values)
    if not _require(n, period + 1, "rsi", period, strict):
        return _empty(n)

    delta = np.zeros(n, dtype=np.float64)
    delta[1:] = np.diff(values)
    avg_gain = _wilder(np.where(delta > 0, delta, 0.0), period)
    avg_loss = _wilder(np.where(delta < 0, -delta, 0.0), period)

    out = _empty(n)
    valid = ~np.isnan(avg_gain)
    no_loss = valid & (avg_loss == 0)
    with_loss = valid & (avg_loss > 0)
    out[no_loss] = 100.0
    rs = avg_gain[with_loss] / avg_loss[with_loss]
    out[with_loss] = 100.0 - 100.0 / (1.0 + rs)
    return out


def macd(
    data: SeriesLike,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
    field: str = "close",
    strict: bool = False,
) -> MACDResult:
    """MACD line, signal line and histogram.

    All three lines share one warm-up: a position is defined only where the
    fast EMA, the slow EMA and the signal EMA are all defined.
    """
    for period in (fast, slow, signal):
        _check_period(period)
    if fast >= slow:
        raise ValueError(f"MACD fast period ({fast}) must be below slow period ({slow})")
    values = series_field(data, field)
    n = len(values)
    needed = slow + signal - 1
    if not _require(n, needed, "macd", slow, strict):
        return MACDResult(_empty(n), _empty(n), _empty(n))

    line = ema(values, fast) - ema(values, slow)
    signal_line = ema(line, signal)
    valid = ~np.isnan(signal_line)
    line = np.where(valid, line, np.nan)
    histogram = line - signal_line
    return MACDResult(macd=line, signal=signal_line, histogram=histogram)


def bollinger(
    data: SeriesLike,
    period: int = 20,
    k: float = 2.0,
    field: str = "close",
    strict: bool = False,
) -> BollingerBands:
    """Bollinger Bands around the SMA using the population standard deviation."""
    _check_period(period)
    values = series_field(data, field)
    n = len(values)
    upper, middle, lower = _empty(n), _empty(n), _empty(n)
    if not _require(n, period, "bollinger", period, strict):
        return BollingerBands(upper, middle, lower)

    windows = sliding_window_view(values, period)
    mean = windows.mean(axis=1)
    std = windows.std(axis=1)
    middle[period - 1 :] = mean
    upper[period - 1 :] = mean + k * std
    lower[period - 1 :] = mean - k * std
    return BollingerBands(upper=upper, middle=middle, lower=lower)


def true_range(bars: Sequence[Bar]) -> FloatArray:
    """True range per bar; position 0 has no previous close and is NaN."""
    high = series_field(bars, "high")
    low = series_field(bars, "low")
    close = series_field(bars, "close")
    n = len(close)
    out = _empty(n)
    if n < 2:
        return out
    prev_close = close[:-1]
    out[1:] = np.maximum.reduce(
        [
            high[1:] - low[1:],
            np.abs(high[1:] - prev_close),
            np.abs(low[1:] - prev_close),
        ]
    )
    return out


def atr(bars: Sequence[Bar], period: int = 14, strict: bool = False) -> FloatArray:
    """Average True Range with Wilder smoothing, first defined at ``period``."""
    _check_period(period)
    n = len(bars)
    if not _require(n, period + 1, "atr", period, strict):
        return _empty(n)
    return _wilder(true_range(bars), period)


__all__ = [
    "FloatArray",
    "MACDResult",
    "BollingerBands",
    "series_field",
    "warmup_length",
    "sma",
    "ema",
    "rsi",
    "macd",
    "bollinger",
    "true_range",
    "atr",
]
