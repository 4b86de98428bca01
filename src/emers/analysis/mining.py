"""Statistical mining over bar series and the stored event history.

Volatility forecasts, a composite anomaly score with a sweep over a whole
series, and an outcome estimate for an event from its most similar
predecessors. All standard deviations are population (``ddof=0``).
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from emers.analysis.indicators import FloatArray, series_field, true_range
from emers.types import Bar, DetectedEvent

MIN_VOLATILITY_BARS = 20
EWMA_DECAY = 0.94

ANOMALY_LOOKBACK = 20
MIN_ANOMALY_BARS = 30
ANOMALY_SIGMA = 2.0
ANOMALY_SEPARATION = 5

# Weights of the anomaly score components.
RETURN_WEIGHT = 0.4
VOLUME_WEIGHT = 0.3
RANGE_WEIGHT = 0.3

SIMILARITY_CUTOFF = 0.6
HISTORY_WEIGHT = 0.7


def _log_returns(bars: Sequence[Bar]) -> FloatArray | None:
    closes = series_field(bars, "close")
    if np.any(closes <= 0):
        return None
    return np.diff(np.log(closes))


def predict_volatility(bars: Sequence[Bar], horizon: int = 1) -> float:
    """Historical volatility of daily log returns, scaled to ``horizon`` days.

    :param bars: Date-ordered bar series.
    :param horizon: Forecast horizon in trading days.
    :returns: ``std(log returns) * sqrt(horizon)``, or 0.0 for fewer than
        20 bars or a non-positive close.
    """
    if horizon < 1:
        raise ValueError(f"horizon must be >= 1, got {horizon}")
    if len(bars) < MIN_VOLATILITY_BARS:
        return 0.0
    returns = _log_returns(bars)
    if returns is None:
        return 0.0
    return float(np.std(returns)) * math.sqrt(horizon)


def predict_volatility_ewma(
    bars: Sequence[Bar], lookback: int = 20, decay: float = EWMA_DECAY
) -> float:
    """Exponentially weighted volatility of the last ``lookback`` log returns.

    The variance is seeded with the square of the latest return and then
    folded over the older returns of the window, newest first:
    ``var = decay * var + (1 - decay) * r**2``.

    :returns: The EWMA volatility, or 0.0 for fewer than ``lookback + 1``
        bars or a non-positive close.
    """
    if lookback < 1:
        raise ValueError(f"lookback must be >= 1, got {lookback}")
    if not 0.0 < decay < 1.0:
        raise ValueError(f"decay must be in (0, 1), got {decay}")
    if len(bars) < lookback + 1:
        return 0.0
    returns = _log_returns(bars)
    if returns is None:
        return 0.0
    window = returns[-lookback:]
    variance = float(window[-1]) ** 2
    for value in window[-2::-1]:
        variance = decay * variance + (1.0 - decay) * float(value) ** 2
    return math.sqrt(variance)


def anomaly_score(bars: Sequence[Bar], lookback: int = ANOMALY_LOOKBACK) -> float:
    """How unusual the last bar is against the ``lookback`` bars before it.

    The score combines three factors::

        0.4 * |r - mean(r_hist)| / std(r_hist)
        + 0.3 * (volume / mean(volume_hist) - 1)
        + 0.3 * (true_range / mean(true_range_hist) - 1)

    A factor whose reference is zero (flat history, no volume, no range)
    contributes nothing.

    :param bars: Date-ordered series; only the last ``lookback + 2`` bars are used.
    :returns: The score, or 0.0 when the series is too short or has a
        non-positive close.
    """
    if lookback < 2:
        raise ValueError(f"lookback must be >= 2, got {lookback}")
    if len(bars) < lookback + 2:
        return 0.0
    window = bars[-(lookback + 2):]
    closes = series_field(window, "close")
    if np.any(closes <= 0):
        return 0.0
    returns = closes[1:] / closes[:-1] - 1.0
    volumes = series_field(window, "volume")
    ranges = true_range(window)

    history = returns[:-1]
    spread = float(np.std(history))
    score = 0.0
    if spread > 0:
        score += RETURN_WEIGHT * abs(float(returns[-1]) - float(np.mean(history))) / spread
    avg_volume = float(np.mean(volumes[1:-1]))
    if avg_volume > 0:
        score += VOLUME_WEIGHT * (float(volumes[-1]) / avg_volume - 1.0)
    avg_range = float(np.mean(ranges[1:-1]))
    if avg_range > 0:
        score += RANGE_WEIGHT * (float(ranges[-1]) / avg_range - 1.0)
    return score


def anomaly_scores(bars: Sequence[Bar], lookback: int = ANOMALY_LOOKBACK) -> FloatArray:
    """:func:`anomaly_score` of every bar against its own trailing window.

    Aligned with ``bars``; positions without a full window hold NaN.
    """
    out = np.full(len(bars), np.nan, dtype=np.float64)
    for i in range(lookback + 1, len(bars)):
        out[i] = anomaly_score(bars[i - lookback - 1 : i + 1], lookback)
    return out


def select_anomalies(
    scores: FloatArray,
    sigma: float = ANOMALY_SIGMA,
    min_separation: int = ANOMALY_SEPARATION,
    max_anomalies: int | None = None,
) -> list[int]:
    """Positions whose score exceeds ``mean + sigma * std`` of all scores.

    NaN positions are ignored. Scanning in order, a position closer than
    ``min_separation`` to an already selected one is skipped.
    """
    valid = scores[~np.isnan(scores)]
    if valid.size == 0:
        return []
    threshold = float(np.mean(valid)) + sigma * float(np.std(valid))
    selected: list[int] = []
    for i, score in enumerate(scores):
        if max_anomalies is not None and len(selected) >= max_anomalies:
            break
        if np.isnan(score) or score <= threshold:
            continue
        if selected and i - selected[-1] < min_separation:
            continue
        selected.append(i)
    return selected


def detect_anomalies(
    bars: Sequence[Bar],
    max_anomalies: int | None = None,
    lookback: int = ANOMALY_LOOKBACK,
) -> list[int]:
    """Indices of the bars that stand out from their trailing window.

    :returns: Ascending bar indices, empty for fewer than 30 bars.
    """
    if len(bars) < max(MIN_ANOMALY_BARS, lookback + 2):
        return []
    return select_anomalies(anomaly_scores(bars, lookback), max_anomalies=max_anomalies)


def predict_event_outcome(
    event: DetectedEvent, similar: Sequence[tuple[DetectedEvent, float]]
) -> float:
    """Expected market impact of ``event`` from similar past events.

    The similarity-weighted mean of the neighbours' market impact
    (``impact_score / 10``) is blended with the event's own
    sentiment-scaled impact::

        0.7 * weighted_mean + 0.3 * 0.1 * sentiment * impact_score / 100

    :param similar: ``(event, similarity)`` pairs, as returned by
        :meth:`EventDatabase.find_similar`.
    :returns: The prediction, or 0.0 without neighbours.
    """
    pairs = [(other, weight) for other, weight in similar if weight > 0]
    if not pairs:
        return 0.0
    weights = np.array([weight for _, weight in pairs], dtype=np.float64)
    outcomes = np.array([other.impact_score / 10.0 for other, _ in pairs], dtype=np.float64)
    history = float(np.average(outcomes, weights=weights))
    own = event.sentiment * event.impact_score / 100.0
    return HISTORY_WEIGHT * history + (1.0 - HISTORY_WEIGHT) * own * 0.1


__all__ = [
    "predict_volatility",
    "predict_volatility_ewma",
    "anomaly_score",
    "anomaly_scores",
    "select_anomalies",
    "detect_anomalies",
    "predict_event_outcome",
]
