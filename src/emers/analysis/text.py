"""Bag-of-words text analysis for news articles.

The :class:`TextAnalyzer` is a plain value configured at construction: it
holds the polarity vocabularies and the event keyword lists and has no other
state, so one instance can be shared freely between threads.
"""

from __future__ import annotations

import math
import re
import string
from typing import Iterable, Mapping, Sequence

from emers.types import (
    Article,
    ArticleAnalysis,
    EntityKind,
    EventType,
    NamedEntity,
    SentimentResult,
)

DEFAULT_POSITIVE_WORDS: tuple[str, ...] = (
    "gain", "growth", "profit", "positive", "increase", "up", "rising", "rose",
    "strong", "success", "successful", "bullish", "recovery", "improve",
    "improved", "rally", "surge", "outperform", "beat", "exceed", "exceeded",
    "opportunity", "optimistic", "advantage",
)

DEFAULT_NEGATIVE_WORDS: tuple[str, ...] = (
    "loss", "decline", "drop", "fall", "fell", "down", "decrease", "negative",
    "weak", "poor", "bearish", "crash", "crisis", "risk", "threat", "concern",
    "concerned", "worried", "trouble", "underperform", "miss", "missed",
    "below", "fail", "failed", "warning", "danger",
)

# Keyword lists for the ten corporate event types, in EventType order.
DEFAULT_EVENT_KEYWORDS: dict[EventType, tuple[str, ...]] = {
    EventType.EARNINGS_ANNOUNCEMENT: (
        "earnings", "profit", "revenue", "eps", "income", "quarter",
        "quarterly", "financial", "results", "reported",
    ),
    EventType.DIVIDEND_ANNOUNCEMENT: (
        "dividend", "split", "buyback", "repurchase", "payout",
        "distribution", "yield", "share", "shareholder", "investor",
    ),
    EventType.MERGER_ACQUISITION: (
        "merger", "acquisition", "takeover", "buyout", "purchased",
        "acquired", "merged", "deal", "consolidation", "transaction",
    ),
    EventType.LEADERSHIP_CHANGE: (
        "ceo", "executive", "chairman", "president", "chief", "officer",
        "leadership", "appointed", "resigned", "management",
    ),
    EventType.CORPORATE_SCANDAL: (
        "scandal", "fraud", "lawsuit", "investigation", "probe", "legal",
        "court", "regulator", "sec", "violation",
    ),
    EventType.IPO: (
        "ipo", "offering", "public", "debut", "listing", "shares", "stock",
        "priced", "markets", "exchange",
    ),
    EventType.LAYOFFS: (
        "layoff", "fired", "redundancy", "cutback", "downsizing", "job",
        "workforce", "employee", "staff", "reduction",
    ),
    EventType.PRODUCT_LAUNCH: (
        "product", "launch", "new", "unveil", "announce", "release",
        "innovation", "technology", "feature", "breakthrough",
    ),
    EventType.PARTNERSHIP: (
        "partnership", "collaborate", "alliance", "agreement", "deal",
        "joint", "venture", "cooperation", "strategic", "partner",
    ),
    EventType.REGULATORY_CHANGE: (
        "regulatory", "regulation", "law", "legislation", "compliance",
        "approval", "fda", "government", "agency", "policy",
    ),
}

PERSON_TITLES = frozenset({"Mr", "Mrs", "Ms", "Dr", "CEO", "Chairman", "President", "Director"})
ORG_SUFFIXES: tuple[str, ...] = ("Inc", "Corp", "LLC", "Ltd", "Company", "Group", "Associates", "Bank")
LOCATIVE_PREPOSITIONS = frozenset({"in", "at", "from"})

MAX_SENTIMENT_KEYWORDS = 10
UNKNOWN_CONFIDENCE = 0.5

_TOKEN_SPLIT = re.compile(f"[\\s{re.escape(string.punctuation)}]+")


def tokenize(text: str) -> list[str]:
    """Split text on ASCII whitespace and punctuation, dropping empty tokens."""
    return [token for token in _TOKEN_SPLIT.split(text) if token]


class TextAnalyzer:
    """Sentiment scorer, entity tagger and event-type classifier.

    :param positive_words: Positive vocabulary (built-in list if None).
    :param negative_words: Negative vocabulary (built-in list if None).
    :param event_keywords: Keyword list per corporate event type.
    :param max_entities: Maximum number of entities returned per text.
    """

    def __init__(
        self,
        positive_words: Iterable[str] | None = None,
        negative_words: Iterable[str] | None = None,
        event_keywords: Mapping[EventType, Sequence[str]] | None = None,
        max_entities: int = 20,
    ) -> None:
        self.positive_words = _normalize_vocabulary(
            DEFAULT_POSITIVE_WORDS if positive_words is None else positive_words
        )
        self.negative_words = _normalize_vocabulary(
            DEFAULT_NEGATIVE_WORDS if negative_words is None else negative_words
        )
        keywords = DEFAULT_EVENT_KEYWORDS if event_keywords is None else event_keywords
        # Iterate in EventType order so ties resolve deterministically.
        self.event_keywords: dict[EventType, tuple[str, ...]] = {
            event_type: _normalize_vocabulary(keywords[event_type])
            for event_type in EventType
            if event_type in keywords
        }
        self.max_entities = max_entities

    # ------------------------------------------------------------------ sentiment

    def analyze_sentiment(self, text: str) -> SentimentResult:
        """Score the polarity of ``text``.

        Each vocabulary term is counted by its non-overlapping occurrences in
        the lowercased text.
        """
        lowered = text.lower()
        keywords: list[str] = []

        def count(vocabulary: tuple[str, ...]) -> int:
            total = 0
            for word in vocabulary:
                hits = lowered.count(word)
                if hits == 0:
                    continue
                total += hits
                if len(keywords) < MAX_SENTIMENT_KEYWORDS and word not in keywords:
                    keywords.append(word)
            return total

        pos = count(self.positive_words)
        neg = count(self.negative_words)
        total = pos + neg
        if total == 0:
            return SentimentResult(score=0.0, confidence=0.3, keywords=[])
        return SentimentResult(
            score=(pos - neg) / total,
            confidence=min(total / 10.0, 1.0),
            keywords=keywords,
        )

    # ------------------------------------------------------------------ entities

    def extract_entities(self, text: str, max_entities: int | None = None) -> list[NamedEntity]:
        """Tag people, organizations and locations in text order.

        - PERSON: the token right after a title such as ``Mr`` or ``CEO``.
        - ORG: a token containing a corporate suffix such as ``Corp``.
        - LOCATION: a capitalized token of 3+ characters after ``in``/``at``/``from``.
        """
        limit = self.max_entities if max_entities is None else max_entities
        entities: list[NamedEntity] = []
        previous = ""
        for token in tokenize(text):
            if len(entities) >= limit:
                break
            kind = _entity_kind(token, previous)
            if kind is not None:
                entities.append(NamedEntity(text=token, kind=kind))
            previous = token
        return entities

    # ------------------------------------------------------------------ classification

    def classify_event(self, text: str) -> tuple[EventType, float]:
        """Return the most likely corporate event type and its confidence.

        Confidence per type is ``min(0.5 + distinct_matches / 10, 1.0)``.
        Ties go to the type declared first in :class:`EventType`; text with no
        keyword at all is ``Unknown`` with confidence 0.5.
        """
        lowered = text.lower()
        best_type = EventType.UNKNOWN
        best_confidence = UNKNOWN_CONFIDENCE
        best_matches = 0
        for event_type, keywords in self.event_keywords.items():
            matches = sum(1 for keyword in keywords if keyword in lowered)
            if matches == 0:
                continue
            confidence = min(0.5 + matches / 10.0, 1.0)
            if best_matches == 0 or confidence > best_confidence:
                best_type, best_confidence, best_matches = event_type, confidence, matches
        return best_type, best_confidence

    # ------------------------------------------------------------------ articles

    def analyze(self, article: Article) -> ArticleAnalysis:
        """Run sentiment, entity tagging and classification on an article."""
        text = f"{article.title}\n{article.body}" if article.body else article.title
        event_type, confidence = self.classify_event(text)
        return ArticleAnalysis(
            article=article,
            sentiment=self.analyze_sentiment(text),
            entities=self.extract_entities(text),
            candidate_type=event_type,
            candidate_confidence=confidence,
        )

    def analyze_many(self, articles: Iterable[Article]) -> list[ArticleAnalysis]:
        return [self.analyze(article) for article in articles]

    def keyword_importance(self, articles: Sequence[Article], max_keywords: int = 10) -> list[str]:
        """Rank body words across articles with a simple TF-IDF weighting.

        Tokens shorter than four characters are ignored. Ties keep
        first-seen order.
        """
        if not articles or max_keywords <= 0:
            return []
        frequency: dict[str, int] = {}
        document_frequency: dict[str, int] = {}
        for article in articles:
            seen: set[str] = set()
            for token in tokenize(article.body):
                if len(token) < 4:
                    continue
                word = token.lower()
                frequency[word] = frequency.get(word, 0) + 1
                seen.add(word)
            for word in seen:
                document_frequency[word] = document_frequency.get(word, 0) + 1

        n_docs = len(articles)
        scores = {
            word: (count / 1000.0) * math.log(n_docs / (document_frequency[word] + 1))
            for word, count in frequency.items()
        }
        ranked = sorted(scores, key=lambda word: scores[word], reverse=True)
        return ranked[:max_keywords]

    @staticmethod
    def news_relevance(analysis: ArticleAnalysis, symbol: str) -> float:
        """Estimate how relevant an analyzed article is to ``symbol`` (0..1)."""
        needle = symbol.lower()
        if not needle:
            return 0.0
        relevance = 0.0
        if needle in analysis.article.title.lower():
            relevance += 0.6
        if needle in analysis.article.body.lower():
            relevance += 0.3
        relevance += analysis.candidate_confidence * 0.2
        return min(relevance, 1.0)


def _normalize_vocabulary(words: Iterable[str]) -> tuple[str, ...]:
    """Lowercase, strip and de-duplicate words, keeping their order."""
    seen: dict[str, None] = {}
    for word in words:
        cleaned = word.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


def _entity_kind(token: str, previous: str) -> EntityKind | None:
    if previous in PERSON_TITLES:
        return EntityKind.PERSON
    if any(suffix in token for suffix in ORG_SUFFIXES):
        return EntityKind.ORG
    if (
        previous in LOCATIVE_PREPOSITIONS
        and len(token) >= 3
        and "A" <= token[0] <= "Z"
    ):
        return EntityKind.LOCATION
    return None


__all__ = [
    "DEFAULT_POSITIVE_WORDS",
    "DEFAULT_NEGATIVE_WORDS",
    "DEFAULT_EVENT_KEYWORDS",
    "TextAnalyzer",
    "tokenize",
]
