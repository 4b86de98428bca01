"""Tests for the technical indicator kernels."""

from datetime import date, timedelta

import numpy as np
import pytest

from emers.analysis.indicators import (atr, bollinger, ema, macd, rsi,
                                       series_field, sma, true_range,
                                       warmup_length)
from emers.exceptions import InsufficientDataError
from emers.types import Bar


def make_bars(closes: list[float], spread: float = 1.0) -> list[Bar]:
    """Create consecutive daily bars around the given closes."""
    start = date(2024, 1, 1)
    return [
        Bar(
            date=start + timedelta(days=i),
            open=close,
            high=close + spread,
            low=close - spread,
            close=close,
            volume=1000.0,
        )
        for i, close in enumerate(closes)
    ]


@pytest.fixture
def random_closes() -> np.ndarray:
    """Seeded random walk of 200 closes."""
    rng = np.random.default_rng(42)
    return 100.0 + np.cumsum(rng.normal(0.0, 1.0, 200))


def leading_nans(values: np.ndarray) -> int:
    defined = np.flatnonzero(~np.isnan(values))
    return int(defined[0]) if len(defined) else len(values)


# ---------------------------------------------------------------------------
# Reference values
# ---------------------------------------------------------------------------


class TestSMA:
    """Tests for the simple moving average."""

    def test_sma_of_rising_closes(self) -> None:
        """SMA(3) of 10..15 is the middle value of each window."""
        out = sma(make_bars([10, 11, 12, 13, 14, 15]), 3)

        assert np.isnan(out[:2]).all()
        np.testing.assert_allclose(out[2:], [11, 12, 13, 14], rtol=1e-12)

    def test_sma_accepts_plain_numbers(self) -> None:
        """Kernels also work on numeric sequences."""
        np.testing.assert_allclose(sma([1.0, 2.0, 3.0, 4.0], 2)[1:], [1.5, 2.5, 3.5])

    def test_sma_on_other_field(self) -> None:
        """The field argument selects the bar attribute."""
        out = sma(make_bars([10, 11, 12]), 2, field="high")
        np.testing.assert_allclose(out[1:], [11.5, 12.5])

    def test_sma_linearity(self, random_closes: np.ndarray) -> None:
        """SMA(a*x + b) == a*SMA(x) + b."""
        a, b = 2.5, -7.0
        left = sma(a * random_closes + b, 10)
        right = a * sma(random_closes, 10) + b

        np.testing.assert_allclose(left[9:], right[9:], rtol=1e-12, atol=1e-9)


class TestEMA:
    """Tests for the exponential moving average."""

    def test_ema_seeded_with_sma(self) -> None:
        """EMA(3) is seeded at index 2 with the mean of the first window."""
        out = ema(make_bars([1, 2, 4, 7, 11]), 3)

        assert np.isnan(out[:2]).all()
        assert out[2] == pytest.approx(7 / 3, rel=1e-9)
        assert out[3] == pytest.approx(0.5 * 7 + 0.5 * 7 / 3, rel=1e-9)
        assert out[4] == pytest.approx(0.5 * 11 + 0.5 * out[3], rel=1e-9)

    def test_ema_skips_leading_nans(self) -> None:
        """An upstream warm-up shifts the EMA seed."""
        out = ema([np.nan, np.nan, 1.0, 2.0, 3.0], 2)

        assert np.isnan(out[:3]).all()
        assert out[3] == pytest.approx(1.5)


class TestRSI:
    """Tests for the relative strength index."""

    def test_rsi_balanced_gains_and_losses_is_50(self) -> None:
        """Seven gains then seven losses of equal size give RSI 50."""
        closes = [100 + i for i in range(8)] + [106 - i for i in range(7)]
        out = rsi(make_bars(closes), 14)

        assert len(out) == 15
        assert np.isnan(out[:14]).all()
        assert out[14] == pytest.approx(50.0)

    def test_rsi_is_100_without_losses(self) -> None:
        """A strictly rising series has RSI 100."""
        out = rsi(make_bars([float(i) for i in range(1, 30)]), 14)
        assert (out[14:] == 100.0).all()

    def test_rsi_is_0_without_gains(self) -> None:
        """A strictly falling series has RSI 0."""
        out = rsi(make_bars([float(i) for i in range(30, 1, -1)]), 14)
        assert (out[14:] == 0.0).all()

    def test_rsi_range(self, random_closes: np.ndarray) -> None:
        """RSI stays within [0, 100]."""
        out = rsi(random_closes, 14)
        valid = out[~np.isnan(out)]

        assert len(valid) == len(random_closes) - 14
        assert ((valid >= 0) & (valid <= 100)).all()


class TestMACD:
    """Tests for MACD."""

    def test_macd_shared_warmup(self, random_closes: np.ndarray) -> None:
        """All three lines are defined from the same position."""
        result = macd(random_closes, 12, 26, 9)
        expected = warmup_length("macd", 26, 9)

        assert leading_nans(result.macd) == expected
        assert leading_nans(result.signal) == expected
        assert leading_nans(result.histogram) == expected

    def test_macd_histogram_is_difference(self, random_closes: np.ndarray) -> None:
        """histogram == macd - signal."""
        result = macd(random_closes)
        valid = ~np.isnan(result.histogram)
        np.testing.assert_allclose(
            result.histogram[valid], (result.macd - result.signal)[valid], rtol=1e-9
        )

    def test_macd_of_constant_series_is_zero(self) -> None:
        """A flat series has no momentum."""
        result = macd([50.0] * 60)
        valid = ~np.isnan(result.macd)
        np.testing.assert_allclose(result.macd[valid], 0.0, atol=1e-12)
        np.testing.assert_allclose(result.signal[valid], 0.0, atol=1e-12)

    def test_macd_fast_must_be_below_slow(self) -> None:
        """fast >= slow is a programming error."""
        with pytest.raises(ValueError):
            macd([1.0] * 50, fast=26, slow=12)


class TestBollinger:
    """Tests for Bollinger Bands."""

    def test_bands_use_population_std(self) -> None:
        """Width is k times the population standard deviation."""
        bands = bollinger([1.0, 2.0, 3.0], 3, k=2.0)
        std = np.std([1.0, 2.0, 3.0])

        assert bands.middle[2] == pytest.approx(2.0, rel=1e-12)
        assert bands.upper[2] == pytest.approx(2.0 + 2 * std, rel=1e-12)
        assert bands.lower[2] == pytest.approx(2.0 - 2 * std, rel=1e-12)

    def test_bands_contain_middle(self, random_closes: np.ndarray) -> None:
        """lower < middle < upper wherever the window varies."""
        bands = bollinger(random_closes, 20, k=1.0)
        valid = ~np.isnan(bands.middle)

        assert (bands.lower[valid] < bands.middle[valid]).all()
        assert (bands.middle[valid] < bands.upper[valid]).all()


class TestATR:
    """Tests for true range and ATR."""

    def test_true_range_first_position_undefined(self) -> None:
        """The first bar has no previous close."""
        out = true_range(make_bars([10, 11, 12]))
        assert np.isnan(out[0])
        np.testing.assert_allclose(out[1:], [2.0, 2.0])

    def test_true_range_uses_gap_to_previous_close(self) -> None:
        """A gap up widens the true range beyond high - low."""
        bars = make_bars([10, 20])
        assert true_range(bars)[1] == pytest.approx(11.0)

    def test_atr_of_constant_range(self) -> None:
        """Bars with a constant range of 2 have ATR 2."""
        out = atr(make_bars([100.0] * 30), 14)

        assert np.isnan(out[:14]).all()
        np.testing.assert_allclose(out[14:], 2.0)


# ---------------------------------------------------------------------------
# Boundary behavior
# ---------------------------------------------------------------------------


class TestWarmupAndErrors:
    """Alignment, warm-up and error handling shared by all kernels."""

    @pytest.mark.parametrize("period", [2, 5, 14, 20])
    def test_alignment_and_warmup(self, random_closes: np.ndarray, period: int) -> None:
        """Every output has input length and the documented warm-up."""
        bars = make_bars(list(random_closes))
        cases = {
            "sma": sma(bars, period),
            "ema": ema(bars, period),
            "rsi": rsi(bars, period),
            "bollinger": bollinger(bars, period).middle,
            "atr": atr(bars, period),
        }
        for name, out in cases.items():
            assert len(out) == len(bars), name
            assert leading_nans(out) == warmup_length(name, period), name
            assert not np.isnan(out[warmup_length(name, period):]).any(), name

    def test_short_series_is_all_warmup(self) -> None:
        """Too few observations give an all-NaN result of input length."""
        for out in (sma([1.0, 2.0], 3), ema([1.0, 2.0], 3), rsi([1.0, 2.0, 3.0], 3)):
            assert np.isnan(out).all()
        assert len(atr(make_bars([1.0, 2.0]), 3)) == 2

    def test_strict_mode_raises_insufficient_data(self) -> None:
        """strict=True turns a short series into an error."""
        with pytest.raises(InsufficientDataError) as exc_info:
            sma([1.0, 2.0], 3, strict=True)
        assert exc_info.value.context["available"] == 2

    def test_period_below_two_is_rejected(self) -> None:
        """Periods below 2 are programming errors."""
        with pytest.raises(ValueError):
            sma([1.0, 2.0, 3.0], 1)

    def test_empty_series(self) -> None:
        """Empty input yields empty output."""
        assert len(sma([], 3)) == 0
        assert len(series_field([])) == 0

    def test_kernels_are_deterministic(self, random_closes: np.ndarray) -> None:
        """Repeated calls give bit-identical results."""
        assert np.array_equal(ema(random_closes, 10), ema(random_closes, 10), equal_nan=True)
        first, second = macd(random_closes), macd(random_closes)
        assert np.array_equal(first.histogram, second.histogram, equal_nan=True)
