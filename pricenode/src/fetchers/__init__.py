"""
Price fetchers for multiple API sources.

This module provides a unified interface for fetching USD spot prices
from various exchanges and aggregator APIs.

Usage:
    from pricenode.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['binance', 'coinbase', 'coingecko', 'cryptocompare', 'geckoterminal', 'kraken', 'kucoin', 'okx']

    # Create a fetcher instance
    fetcher = get_fetcher("coinbase")
    price = await fetcher.get_price("BTC")

    # For fetchers accepting API keys
    fetcher = get_fetcher("cryptocompare", api_key="your-api-key")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    UnsupportedAssetError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .binance import BinanceFetcher
from .coinbase import CoinbaseFetcher
from .coingecko import CoinGeckoFetcher
from .cryptocompare import CryptoCompareFetcher
from .geckoterminal import GeckoTerminalFetcher
from .kraken import KrakenFetcher
from .kucoin import KucoinFetcher
from .okx import OKXFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherConfigError",
    "FetcherHTTPError",
    "UnsupportedAssetError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "BinanceFetcher",
    "CoinbaseFetcher",
    "CoinGeckoFetcher",
    "CryptoCompareFetcher",
    "GeckoTerminalFetcher",
    "KrakenFetcher",
    "KucoinFetcher",
    "OKXFetcher",
]
