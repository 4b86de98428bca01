"""Indicator kernels, text analysis, event detection, impact scoring and mining."""

from emers.analysis.detector import EventDetector, resolve_symbol
from emers.analysis.impact import ImpactScorer, event_similarity, render_report
from emers.analysis.mining import (
    anomaly_score,
    detect_anomalies,
    predict_event_outcome,
    predict_volatility,
    predict_volatility_ewma,
)
from emers.analysis.text import TextAnalyzer

__all__ = [
    "EventDetector",
    "ImpactScorer",
    "TextAnalyzer",
    "anomaly_score",
    "detect_anomalies",
    "event_similarity",
    "predict_event_outcome",
    "predict_volatility",
    "predict_volatility_ewma",
    "render_report",
    "resolve_symbol",
]
