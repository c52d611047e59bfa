"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement get_price().
A shared httpx.AsyncClient is used across all fetchers to avoid connection overhead.

Fetchers raise on failure instead of returning a sentinel: the caller
(SourcePool) owns timeouts and retries and needs to tell a failed attempt
apart from a price.

Fetchers can optionally implement batch fetching for APIs that support querying
multiple symbols in a single request.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"
        SYMBOL_MAP = {"BTC": "BTC-USD"}

        async def get_price(self, symbol: str) -> float:
            market = self._market(symbol)
            response = await self._get(f"https://api.example.com/{market}")
            return self.validate_price(response.json()["price"], symbol)
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., missing API key)."""

    pass


class UnsupportedAssetError(FetcherError):
    """Raised when a source cannot quote the requested asset at all."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "coinbase", "kraken")
        - get_price(): Async method returning the USD price of an asset

    :cvar name: Unique identifier for this fetcher.
    :cvar SYMBOL_MAP: Asset symbol to provider market identifier.
    :cvar FIXED_PRICES: Assets this source quotes as a constant instead of
        calling its API (stablecoins it cannot quote reliably).
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""

    SYMBOL_MAP: ClassVar[dict[str, str]] = {}
    FIXED_PRICES: ClassVar[dict[str, float]] = {}

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all fetcher instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (tests inject a mock transport here)."""
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    def supports_asset(self, symbol: str) -> bool:
        """Check if this fetcher knows how to quote the asset.

        :param symbol: Asset symbol (e.g., "BTC").
        :returns: True if the asset is mapped or has a fixed price.
        """
        symbol = symbol.upper()
        return symbol in self.SYMBOL_MAP or symbol in self.FIXED_PRICES

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Fetch the current USD price for an asset.

        :param symbol: Asset symbol (e.g., "BTC", "ETH", "USDT").
        :returns: Current price as a positive float.
        :raises FetcherError: If the price cannot be obtained.
        """
        pass

    @property
    def supports_batch(self) -> bool:
        """Check if this fetcher implements get_prices() with one API call."""
        return False

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for several assets, best effort per symbol.

        Default implementation falls back to individual get_price() calls.
        Override in subclasses to implement actual batch API calls.

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price, or None where the fetch failed.
        """
        results: dict[str, float | None] = {}
        for symbol in symbols:
            try:
                results[symbol] = await self.get_price(symbol)
            except FetcherError as e:
                logger.warning(f"[{self.name}] Failed to get price for {symbol}: {e}")
                results[symbol] = None
        return results

    def _market(self, symbol: str) -> str:
        """Map an asset symbol to this provider's market identifier.

        :raises UnsupportedAssetError: If the provider has no mapping.
        """
        market = self.SYMBOL_MAP.get(symbol.upper())
        if market is None:
            raise UnsupportedAssetError(f"Symbol {symbol} not supported by {self.name}")
        return market

    def _fixed_price(self, symbol: str) -> float | None:
        """Return the constant quote for a shortcut asset, or None."""
        return self.FIXED_PRICES.get(symbol.upper())

    @staticmethod
    def validate_price(value: Any, symbol: str) -> float:
        """Convert a raw API value to a positive finite float.

        :param value: Raw price value from the response body.
        :param symbol: Asset symbol (for the error message).
        :returns: Price as float.
        :raises FetcherError: If the value is missing, non-numeric or not positive.
        """
        try:
            price = float(value)
        except (TypeError, ValueError) as e:
            raise FetcherError(f"Invalid price for {symbol}: {value!r}") from e
        if math.isnan(price) or math.isinf(price) or price <= 0:
            raise FetcherError(f"Invalid price for {symbol}: {value!r}")
        return price

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises FetcherHTTPError: On non-2xx response.
        :raises FetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise FetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a URL and decode the JSON body.

        :raises FetcherError: On transport errors or an undecodable body.
        """
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"Invalid JSON from {self.name}: {e}") from e


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.

    .. code-block:: python

        @register_fetcher
        class CoinbaseFetcher(BaseFetcher):
            name = "coinbase"
            ...
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coinbase", "kraken").
    :param api_key: Optional API key.
    :param timeout: Optional per-request timeout in seconds.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
