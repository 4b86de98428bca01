"""Price/news ingestion and the in-memory price series store."""

from emers.data.sources import (CSVPriceFetcher, JSONNewsFetcher, NewsFetcher,
                                PriceFetcher, TiingoNewsFetcher,
                                TiingoPriceFetcher, YahooPriceFetcher,
                                resolve_news_fetcher, resolve_price_fetcher)
from emers.data.store import PriceSeriesStore, sanitize_bars, validate_symbol

__all__ = [
    "PriceFetcher",
    "NewsFetcher",
    "TiingoPriceFetcher",
    "YahooPriceFetcher",
    "CSVPriceFetcher",
    "TiingoNewsFetcher",
    "JSONNewsFetcher",
    "resolve_price_fetcher",
    "resolve_news_fetcher",
    "PriceSeriesStore",
    "sanitize_bars",
    "validate_symbol",
]
