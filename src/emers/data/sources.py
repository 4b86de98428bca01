"""Price and news fetchers.

This module provides abstract interfaces for the upstream feeds the pipeline
consumes and concrete implementations for Tiingo, Yahoo Finance, and local
CSV/JSON files.
"""

from __future__ import annotations

import csv
import datetime as dt
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Mapping

import requests

from emers.exceptions import DataSourceError, ParseError
from emers.types import Article, Bar, DateRange, Symbol

log = logging.getLogger(__name__)

TIINGO_BASE_URL = "https://api.tiingo.com"
TIINGO_NEWS_LIMIT = 50


def parse_day(value: Any, fmt: str | None = None) -> dt.date:
    """Parse a calendar day from an ISO date or timestamp string.

    :param value: ``YYYY-MM-DD`` optionally followed by a time part.
    :param fmt: Optional strptime format used instead of ISO parsing.
    :raises ParseError: If the value is not a recognizable date.
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not value:
        raise ParseError(f"Missing or non-string date: {value!r}")
    try:
        if fmt:
            return dt.datetime.strptime(value, fmt).date()
        return dt.date.fromisoformat(value[:10])
    except ValueError as e:
        raise ParseError(f"Failed to parse date '{value}': {e}", value=value) from e


def _tiingo_api_key(params: Mapping[str, Any]) -> str:
    api_key = params.get("api_key") or os.environ.get("TIINGO_API_KEY")
    if not api_key:
        raise DataSourceError(
            "Tiingo requires 'api_key' in source params or the TIINGO_API_KEY environment variable"
        )
    return str(api_key)


class _TiingoClient:
    """Shared HTTP plumbing for the Tiingo fetchers."""

    def __init__(self, params: Mapping[str, Any], session: requests.Session | None = None) -> None:
        self.api_key = _tiingo_api_key(params)
        self.base_url = str(params.get("base_url", TIINGO_BASE_URL)).rstrip("/")
        self.timeout = float(params.get("timeout", 30))
        self.session = session or requests.Session()

    def get_json(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "Authorization": f"Token {self.api_key}"}
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DataSourceError(f"Tiingo request to {path} failed: {e}", url=url) from e
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Tiingo returned invalid JSON for {path}: {e}", url=url) from e


# ---------------------------------------------------------------------------
# Price fetchers
# ---------------------------------------------------------------------------


class PriceFetcher(ABC):
    """Abstract base class for daily price feeds."""

    @abstractmethod
    def fetch(self, symbol: Symbol, date_range: DateRange) -> list[Bar]:
        """Fetch daily bars for one symbol.

        :param symbol: Ticker to fetch.
        :param date_range: Days to fetch (inclusive start, exclusive end).
        :returns: Bars in chronological order.
        :raises DataSourceError: If the feed cannot be reached.
        :raises ParseError: If the feed returns malformed records.
        """
        ...


class TiingoPriceFetcher(PriceFetcher):
    """Daily prices from the Tiingo end-of-day API.

    :param source_params: Optional parameters:
        - api_key: Tiingo token (default: ``TIINGO_API_KEY`` env var)
        - timeout: Request timeout in seconds (default: 30)
        - base_url: API root (default: https://api.tiingo.com)
    :param session: Optional requests session (for connection reuse).
    """

    def __init__(
        self,
        source_params: dict[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.params = source_params or {}
        self.client = _TiingoClient(self.params, session)

    def fetch(self, symbol: Symbol, date_range: DateRange) -> list[Bar]:
        # Tiingo's endDate is inclusive
        last_day = date_range.end - dt.timedelta(days=1)
        payload = self.client.get_json(
            f"/tiingo/daily/{symbol}/prices",
            {
                "startDate": date_range.start.isoformat(),
                "endDate": last_day.isoformat(),
                "format": "json",
            },
        )
        if not isinstance(payload, list):
            raise ParseError(f"Unexpected Tiingo price payload for '{symbol}'", symbol=symbol)

        bars = []
        for record in payload:
            try:
                bar = Bar(
                    date=parse_day(record.get("date")),
                    open=float(record["open"]),
                    high=float(record["high"]),
                    low=float(record["low"]),
                    close=float(record["close"]),
                    volume=float(record.get("volume", 0.0)),
                    adj_close=record.get("adjClose"),
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ParseError(f"Malformed Tiingo price record for '{symbol}': {e}", symbol=symbol) from e
            if date_range.contains(bar.date):
                bars.append(bar)
        return bars


class YahooPriceFetcher(PriceFetcher):
    """Daily prices from Yahoo Finance via yfinance.

    :param source_params: Optional parameters for configuring the source.
        - timeout: Request timeout in seconds (default: 30)
    """

    def __init__(self, source_params: dict[str, Any] | None = None) -> None:
        self.params = source_params or {}
        self.timeout = self.params.get("timeout", 30)

    def fetch(self, symbol: Symbol, date_range: DateRange) -> list[Bar]:
        try:
            import yfinance as yf
        except ImportError as e:
            raise DataSourceError(
                "yfinance is not installed. Install it with: pip install 'emers[yahoo]'"
            ) from e

        try:
            df = yf.Ticker(str(symbol)).history(
                start=date_range.start.isoformat(),
                end=date_range.end.isoformat(),
                interval="1d",
                auto_adjust=False,
                timeout=self.timeout,
            )
        except Exception as e:
            raise DataSourceError(f"Failed to fetch data for symbol '{symbol}': {e}") from e

        bars = []
        for timestamp, row in df.iterrows():
            bars.append(
                Bar(
                    date=timestamp.date(),
                    open=float(row["Open"]),
                    high=float(row["High"]),
                    low=float(row["Low"]),
                    close=float(row["Close"]),
                    volume=float(row["Volume"]),
                    adj_close=float(row.get("Adj Close", row["Close"])),
                )
            )
        return bars


class CSVPriceFetcher(PriceFetcher):
    """Daily prices from a local CSV file.

    Expected CSV format (default columns): ``date, open, high, low, close,
    volume`` and optionally ``adj_close`` and ``symbol``. Without a symbol
    column every row belongs to the requested symbol.

    :param source_params: Required parameters:
        - file_path: Path to the CSV file.
        Optional parameters:
        - symbol_col, date_col, open_col, high_col, low_col, close_col,
          volume_col, adj_close_col: Column names
        - delimiter: CSV delimiter (default: ",")
        - date_format: strptime format for dates (default: ISO format)
    """

    def __init__(self, source_params: dict[str, Any] | None = None) -> None:
        self.params = source_params or {}
        self.file_path = self.params.get("file_path")
        if not self.file_path:
            raise DataSourceError("CSVPriceFetcher requires 'file_path' in source_params")

        self.symbol_col = self.params.get("symbol_col", "symbol")
        self.date_col = self.params.get("date_col", "date")
        self.open_col = self.params.get("open_col", "open")
        self.high_col = self.params.get("high_col", "high")
        self.low_col = self.params.get("low_col", "low")
        self.close_col = self.params.get("close_col", "close")
        self.volume_col = self.params.get("volume_col", "volume")
        self.adj_close_col = self.params.get("adj_close_col", "adj_close")
        self.delimiter = self.params.get("delimiter", ",")
        self.date_format = self.params.get("date_format")

    def fetch(self, symbol: Symbol, date_range: DateRange) -> list[Bar]:
        path = Path(self.file_path)
        if not path.exists():
            raise DataSourceError(f"CSV file not found: {self.file_path}")

        bars = []
        try:
            with open(path, newline="", encoding="utf-8") as f:
                reader = csv.DictReader(f, delimiter=self.delimiter)
                for row in reader:
                    row_symbol = row.get(self.symbol_col)
                    if row_symbol and row_symbol != symbol:
                        continue
                    day = parse_day(row.get(self.date_col), self.date_format)
                    if not date_range.contains(day):
                        continue
                    try:
                        adj_close = row.get(self.adj_close_col)
                        bars.append(
                            Bar(
                                date=day,
                                open=float(row[self.open_col]),
                                high=float(row[self.high_col]),
                                low=float(row[self.low_col]),
                                close=float(row[self.close_col]),
                                volume=float(row[self.volume_col]),
                                adj_close=float(adj_close) if adj_close else None,
                            )
                        )
                    except (KeyError, TypeError, ValueError) as e:
                        raise ParseError(f"Failed to parse row {row}: {e}") from e
        except csv.Error as e:
            raise ParseError(f"CSV parsing error: {e}") from e
        except OSError as e:
            raise DataSourceError(f"Failed to read CSV file: {e}") from e
        return bars


# ---------------------------------------------------------------------------
# News fetchers
# ---------------------------------------------------------------------------


class NewsFetcher(ABC):
    """Abstract base class for news feeds."""

    @abstractmethod
    def fetch(self, symbols: Iterable[Symbol], date_range: DateRange) -> list[Article]:
        """Fetch articles about any of ``symbols``.

        :param symbols: Tickers of interest (empty = all articles).
        :param date_range: Publication days (inclusive start, exclusive end).
        :returns: Articles in feed order.
        :raises DataSourceError: If the feed cannot be reached.
        :raises ParseError: If the feed returns malformed records.
        """
        ...


def _article_symbol(tickers: Any, wanted: list[str]) -> Symbol | None:
    """First article ticker that was asked for, upper-cased."""
    if not isinstance(tickers, list):
        return None
    upper = [str(ticker).upper() for ticker in tickers]
    for ticker in upper:
        if not wanted or ticker in wanted:
            return Symbol(ticker)
    return None


def _article_from_record(record: Mapping[str, Any], wanted: list[str]) -> Article:
    symbol = record.get("symbol")
    if symbol:
        symbol = Symbol(str(symbol).upper())
    else:
        symbol = _article_symbol(record.get("tickers"), wanted)
    try:
        return Article(
            title=str(record.get("title") or ""),
            source=str(record.get("source") or ""),
            url=str(record.get("url") or ""),
            date=parse_day(record.get("publishedDate") or record.get("date")),
            body=str(record.get("description") or record.get("body") or record.get("content") or ""),
            symbol=symbol,
        )
    except (TypeError, ValueError) as e:
        raise ParseError(f"Malformed news record: {e}") from e


class TiingoNewsFetcher(NewsFetcher):
    """News from the Tiingo news API.

    :param source_params: Optional parameters:
        - api_key: Tiingo token (default: ``TIINGO_API_KEY`` env var)
        - timeout: Request timeout in seconds (default: 30)
        - limit: Maximum articles per request (default: 50)
        - base_url: API root (default: https://api.tiingo.com)
    :param session: Optional requests session (for connection reuse).
    """

    def __init__(
        self,
        source_params: dict[str, Any] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.params = source_params or {}
        self.client = _TiingoClient(self.params, session)
        self.limit = int(self.params.get("limit", TIINGO_NEWS_LIMIT))

    def fetch(self, symbols: Iterable[Symbol], date_range: DateRange) -> list[Article]:
        wanted = [str(symbol).upper() for symbol in symbols]
        query: dict[str, Any] = {
            "startDate": date_range.start.isoformat(),
            "endDate": (date_range.end - dt.timedelta(days=1)).isoformat(),
            "limit": self.limit,
            "format": "json",
        }
        if wanted:
            query["tickers"] = ",".join(symbol.lower() for symbol in wanted)
        payload = self.client.get_json("/tiingo/news", query)
        if not isinstance(payload, list):
            raise ParseError("Unexpected Tiingo news payload")

        articles = []
        for record in payload:
            if not isinstance(record, dict):
                raise ParseError(f"Unexpected Tiingo news record: {record!r}")
            article = _article_from_record(record, wanted)
            if date_range.contains(article.date):
                articles.append(article)
        log.debug("Fetched %d articles for %s", len(articles), ",".join(wanted) or "all symbols")
        return articles


class JSONNewsFetcher(NewsFetcher):
    """News from a local JSON file holding a list of article objects.

    Each object needs ``title`` and ``date`` (or ``publishedDate``) and may
    carry ``source``, ``url``, ``body`` (or ``description``), ``symbol`` and
    ``tickers``.

    :param source_params: Required parameters:
        - file_path: Path to the JSON file.
    """

    def __init__(self, source_params: dict[str, Any] | None = None) -> None:
        self.params = source_params or {}
        self.file_path = self.params.get("file_path")
        if not self.file_path:
            raise DataSourceError("JSONNewsFetcher requires 'file_path' in source_params")

    def fetch(self, symbols: Iterable[Symbol], date_range: DateRange) -> list[Article]:
        path = Path(self.file_path)
        if not path.exists():
            raise DataSourceError(f"JSON file not found: {self.file_path}")
        try:
            with open(path, encoding="utf-8") as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise DataSourceError(f"Failed to read JSON file: {e}") from e
        if not isinstance(records, list):
            raise ParseError(f"Expected a list of articles in {path}")

        wanted = [str(symbol).upper() for symbol in symbols]
        articles = []
        for record in records:
            if not isinstance(record, dict):
                raise ParseError(f"Expected an object per article in {path}, got {record!r}")
            article = _article_from_record(record, wanted)
            if not date_range.contains(article.date):
                continue
            if wanted and article.symbol and article.symbol not in wanted:
                continue
            articles.append(article)
        return articles


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def resolve_price_fetcher(name: str, source_params: dict[str, Any] | None = None) -> PriceFetcher:
    """Construct a price fetcher by name.

    :param name: One of ``tiingo``, ``yahoo``, ``csv``.
    :param source_params: Parameters passed to the fetcher.
    :raises DataSourceError: If the name is unrecognized.
    """
    kind = name.lower()
    if kind == "tiingo":
        return TiingoPriceFetcher(source_params)
    elif kind == "yahoo":
        return YahooPriceFetcher(source_params)
    elif kind == "csv":
        return CSVPriceFetcher(source_params)
    else:
        raise DataSourceError(
            f"Unrecognized price source: '{name}'. Supported types: tiingo, yahoo, csv"
        )


def resolve_news_fetcher(name: str, source_params: dict[str, Any] | None = None) -> NewsFetcher:
    """Construct a news fetcher by name.

    :param name: One of ``tiingo``, ``json``.
    :param source_params: Parameters passed to the fetcher.
    :raises DataSourceError: If the name is unrecognized.
    """
    kind = name.lower()
    if kind == "tiingo":
        return TiingoNewsFetcher(source_params)
    elif kind == "json":
        return JSONNewsFetcher(source_params)
    else:
        raise DataSourceError(
            f"Unrecognized news source: '{name}'. Supported types: tiingo, json"
        )
