"""Impact scoring and defensive-strategy recommendations for detected events."""

from __future__ import annotations

import datetime as dt
import math
from typing import Sequence

import numpy as np

from emers.analysis.mining import predict_volatility_ewma
from emers.types import (
    Bar,
    DetectedEvent,
    EventSeverity,
    EventType,
    ImpactAssessment,
)

SECTOR_NAMES: tuple[str, ...] = (
    "Technology", "Financial", "Healthcare", "Consumer", "Industrial",
    "Energy", "Materials", "Real Estate", "Utilities", "Communication",
)

# Extra keywords for sectors whose name alone is a poor match.
SECTOR_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Technology": ("Tech", "Software", "Hardware"),
    "Financial": ("Bank", "Finance", "Insurance"),
    "Healthcare": ("Health", "Medical", "Pharma"),
}

DEFAULT_SECTOR = "General Market"

DURATION_BY_SEVERITY: dict[EventSeverity, int] = {
    EventSeverity.LOW: 1,
    EventSeverity.MEDIUM: 3,
    EventSeverity.HIGH: 7,
    EventSeverity.CRITICAL: 14,
}

_STRATEGIES: dict[EventType, str] = {
    EventType.MERGER_ACQUISITION: (
        "Merger/Acquisition event detected. Recommended strategy:\n"
        "1. Evaluate implied acquisition price vs current price\n"
        "2. Consider arbitrage opportunities if applicable\n"
        "3. Assess regulatory risk for deal completion\n"
        "4. Review sector for additional consolidation opportunities"
    ),
    EventType.EARNINGS_ANNOUNCEMENT: (
        "Earnings announcement detected. Recommended strategy:\n"
        "1. Compare results to analyst expectations\n"
        "2. Review forward guidance and management commentary\n"
        "3. Assess impact on valuation metrics\n"
        "4. Monitor analyst revisions in the next 1-2 weeks"
    ),
    EventType.DIVIDEND_ANNOUNCEMENT: (
        "Dividend or capital return event detected. Recommended strategy:\n"
        "1. Check the ex-dividend and record dates\n"
        "2. Compare the payout to free cash flow\n"
        "3. Reassess income allocation if the payout changed"
    ),
    EventType.REGULATORY_CHANGE: (
        "Policy change event detected. Recommended strategy:\n"
        "1. Analyze specific sectors impacted by policy change\n"
        "2. Adjust sector weights accordingly\n"
        "3. Look for opportunities in positively impacted sectors\n"
        "4. Re-evaluate strategy in 10-14 days after full market reaction"
    ),
    EventType.LEADERSHIP_CHANGE: (
        "Leadership change detected. Recommended strategy:\n"
        "1. Assess new leadership background and prior performance\n"
        "2. Monitor initial strategic announcements\n"
        "3. Review corporate governance structure\n"
        "4. Evaluate succession planning quality"
    ),
    EventType.PRODUCT_LAUNCH: (
        "Product launch event detected. Recommended strategy:\n"
        "1. Evaluate potential market impact and adoption timeline\n"
        "2. Review competitive landscape implications\n"
        "3. Monitor initial sales/reception data\n"
        "4. Consider supply chain and production capacity risks"
    ),
    EventType.UNKNOWN: (
        "Event detected with insufficient classification information.\n"
        "Recommended strategy:\n"
        "1. Monitor markets for further clarity\n"
        "2. No immediate action recommended\n"
        "3. Reassess situation as more information becomes available"
    ),
}

_ANOMALY_STRATEGY = (
    "{label} detected for {symbol}. Recommended strategy:\n"
    "1. {action}\n"
    "2. Check news flow for a fundamental cause\n"
    "3. Review stop levels against the current ATR\n"
    "4. Avoid adding exposure until the move is explained"
)

_FALLBACK_STRATEGY = "Unrecognized event type. Maintain diversification and monitor developments."


def clamp_impact(value: float) -> int:
    """Round half away from zero and clamp to ``[-10, 10]``."""
    rounded = math.floor(abs(value) + 0.5)
    return int(max(-10, min(10, math.copysign(rounded, value))))


def severity_for(impact_score: int) -> EventSeverity:
    """Bucket an impact score into a severity level."""
    size = abs(impact_score)
    if size >= 9:
        return EventSeverity.CRITICAL
    if size >= 7:
        return EventSeverity.HIGH
    if size >= 4:
        return EventSeverity.MEDIUM
    return EventSeverity.LOW


def _event_index(bars: Sequence[Bar], day: dt.date) -> int:
    for i, bar in enumerate(bars):
        if bar.date == day:
            return i
    return -1


def abnormal_return(bars: Sequence[Bar], day: dt.date, window: int = 5) -> float:
    """Return from the event close to the close ``window`` bars later.

    The expected return is taken as zero. Returns 0.0 if the event day is not
    in the series or the window runs past its end.
    """
    idx = _event_index(bars, day)
    if idx < 0 or idx + window >= len(bars):
        return 0.0
    start = bars[idx].close
    if start == 0:
        return 0.0
    return bars[idx + window].close / start - 1.0


def volatility_change(
    bars: Sequence[Bar], day: dt.date, pre_window: int = 5, post_window: int = 5
) -> float:
    """Relative change in daily-return volatility after the event.

    Compares the population standard deviation of the ``post_window`` returns
    starting at the event with the ``pre_window`` returns before it. Returns
    0.0 when either window is incomplete or the prior volatility is zero.
    """
    idx = _event_index(bars, day)
    if idx < pre_window + 1 or idx + post_window > len(bars):
        return 0.0
    closes = np.array([bar.close for bar in bars], dtype=np.float64)
    if np.any(closes[idx - pre_window - 1 : idx + post_window] == 0):
        return 0.0
    returns = closes[1:] / closes[:-1] - 1.0
    # returns[j] is the return of bar j + 1
    pre = returns[idx - pre_window - 1 : idx - 1]
    post = returns[idx - 1 : idx - 1 + post_window]
    pre_vol = float(np.std(pre))
    if pre_vol <= 0.0:
        return 0.0
    return (float(np.std(post)) - pre_vol) / pre_vol


def affected_sectors(event: DetectedEvent) -> list[str]:
    """Sectors whose name or keywords appear in the event description."""
    text = event.description
    sectors = [
        name
        for name in SECTOR_NAMES
        if name in text or any(keyword in text for keyword in SECTOR_KEYWORDS.get(name, ()))
    ]
    return sectors or [DEFAULT_SECTOR]


def recommend_strategy(event: DetectedEvent, market_impact: float) -> str:
    """Defensive strategy text for an event type."""
    if event.type == EventType.CORPORATE_SCANDAL:
        negative = market_impact < 0
        return (
            f"Corporate event detected for {event.description or event.symbol}. "
            "Recommended strategy:\n"
            f"1. {'Consider reducing' if negative else 'Maintain or increase'} "
            "exposure to affected company\n"
            "2. Assess broader sector impact and consider "
            f"{'reducing' if negative else 'maintaining'} sector exposure\n"
            "3. Review competitors for knock-on effects\n"
            "4. Maintain diversification to minimize single-stock risk"
        )
    if event.type in (EventType.PRICE_JUMP, EventType.PRICE_DROP):
        action = (
            "Consider taking partial profits or tightening stops"
            if event.type == EventType.PRICE_JUMP
            else "Consider hedging or reducing the position"
        )
        label = "Price jump" if event.type == EventType.PRICE_JUMP else "Price drop"
        return _ANOMALY_STRATEGY.format(label=label, symbol=event.symbol, action=action)
    if event.type == EventType.VOLUME_SPIKE:
        return _ANOMALY_STRATEGY.format(
            label="Volume spike",
            symbol=event.symbol,
            action="Watch for follow-through in price before acting",
        )
    if event.type == EventType.VOLATILITY_SPIKE:
        return _ANOMALY_STRATEGY.format(
            label="Volatility spike",
            symbol=event.symbol,
            action="Reduce position size to keep risk per trade constant",
        )
    return _STRATEGIES.get(event.type, _FALLBACK_STRATEGY)


def event_similarity(a: DetectedEvent, b: DetectedEvent) -> float:
    """Weighted similarity of two events in ``[0, 1]``."""
    sentiment_similarity = max(0.0, 1.0 - abs(a.sentiment - b.sentiment))
    impact_similarity = 1.0 - abs(a.impact_score - b.impact_score) / 20.0
    title_similarity = 0.3
    if a.type == b.type:
        title_similarity += 0.4
    if a.symbol and a.symbol == b.symbol:
        title_similarity += 0.3
    description_similarity = 0.3
    if set(a.description.lower().split()) & set(b.description.lower().split()):
        description_similarity += 0.2
    return (
        sentiment_similarity * 0.3
        + impact_similarity * 0.4
        + title_similarity * 0.2
        + description_similarity * 0.1
    )


class ImpactScorer:
    """Scores events and builds impact assessments.

    :param threshold_price: Price-move threshold used to scale price events.
    :param threshold_volume: Volume ratio threshold used to scale volume spikes.
    :param threshold_atr: ATR ratio threshold used to scale volatility spikes.
    """

    def __init__(
        self,
        threshold_price: float = 0.05,
        threshold_volume: float = 3.0,
        threshold_atr: float = 2.0,
    ) -> None:
        self.thresholds: dict[EventType, float] = {
            EventType.PRICE_JUMP: threshold_price,
            EventType.PRICE_DROP: threshold_price,
            EventType.VOLUME_SPIKE: threshold_volume,
            EventType.VOLATILITY_SPIKE: threshold_atr,
        }

    def score_news(self, magnitude: float, sentiment: float) -> int:
        """``clamp(round(5 * magnitude + 5 * sentiment))``."""
        return clamp_impact(5.0 * magnitude + 5.0 * sentiment)

    def score_price(self, event_type: EventType, magnitude: float) -> int:
        """``clamp(round(10 * sign(m) * min(|m| / threshold, 1)))``."""
        threshold = self.thresholds[event_type]
        if magnitude == 0:
            return 0
        scaled = min(abs(magnitude) / threshold, 1.0)
        return clamp_impact(math.copysign(10.0 * scaled, magnitude))

    def score(self, event: DetectedEvent) -> int:
        if event.type in self.thresholds:
            return self.score_price(event.type, event.magnitude)
        return self.score_news(event.magnitude, event.sentiment)

    def apply(self, event: DetectedEvent) -> DetectedEvent:
        """Return a copy of ``event`` carrying its impact score."""
        return event.model_copy(update={"impact_score": self.score(event)})

    def assess(self, event: DetectedEvent, bars: Sequence[Bar] = ()) -> ImpactAssessment:
        """Build the full impact assessment of ``event`` against its price series."""
        impact = self.score(event)
        severity = severity_for(impact)
        market_impact = impact / 10.0
        history = [bar for bar in bars if bar.date <= event.date]
        return ImpactAssessment(
            event=event,
            impact_score=impact,
            severity=severity,
            market_impact=market_impact,
            abnormal_return=abnormal_return(bars, event.date),
            volatility_change=volatility_change(bars, event.date),
            predicted_volatility=predict_volatility_ewma(history),
            affected_sectors=affected_sectors(event),
            duration_estimate=DURATION_BY_SEVERITY[severity],
            recommendation=recommend_strategy(event, market_impact),
        )


def render_report(assessment: ImpactAssessment) -> str:
    """Plain-text report of an impact assessment."""
    event = assessment.event
    lines = [
        f"Date: {event.date.isoformat()}",
        f"Symbol: {event.symbol or '-'}",
        f"Event Type: {event.type.value}",
        f"Description: {event.description}",
        "",
        f"Magnitude: {event.magnitude:.4f}",
        f"Sentiment: {event.sentiment:.2f}",
        f"Impact Score: {assessment.impact_score}",
        f"Severity: {assessment.severity.value.capitalize()}",
        f"Market Impact: {assessment.market_impact * 100.0:.2f}%",
        f"Abnormal Return: {assessment.abnormal_return * 100.0:.2f}%",
        f"Volatility Change: {assessment.volatility_change * 100.0:.2f}%",
        f"Predicted Volatility: {assessment.predicted_volatility * 100.0:.2f}%",
        f"Affected Sectors: {', '.join(assessment.affected_sectors)}",
        f"Estimated Duration: {assessment.duration_estimate} days",
    ]
    if event.source:
        lines.append(f"Source: {event.source}")
    if event.url:
        lines.append(f"URL: {event.url}")
    lines.extend(["", "Recommended Strategy:", assessment.recommendation])
    return "\n".join(lines)


__all__ = [
    "ImpactScorer",
    "clamp_impact",
    "severity_for",
    "abnormal_return",
    "volatility_change",
    "affected_sectors",
    "recommend_strategy",
    "event_similarity",
    "render_report",
]
