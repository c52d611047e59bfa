"""CryptoCompare fetcher.

Endpoint: https://min-api.cryptocompare.com/data/price
Rate Limit: 100,000 calls/month (free tier)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CryptoCompareFetcher(BaseFetcher):
    """Fetcher for CryptoCompare API.

    Uses the min-api endpoint which has generous free tier limits.
    An API key, when configured, is sent in the authorization header.
    """

    name = "cryptocompare"
    BASE_URL = "https://min-api.cryptocompare.com/data"

    SYMBOL_MAP = {
        "BTC": "BTC",
        "ETH": "ETH",
        "USDT": "USDT",
        "USDC": "USDC",
        "DAI": "DAI",
    }

    @property
    def headers(self) -> dict[str, str] | None:
        if not self.has_api_key:
            return None
        return {"authorization": f"Apikey {self.api_key}"}

    @staticmethod
    def _check_error(data: dict) -> None:
        if data.get("Response") == "Error":
            raise FetcherError(
                f"CryptoCompare API error: {data.get('Message', 'Unknown error')}"
            )

    async def get_price(self, symbol: str) -> float:
        """Fetch price from CryptoCompare.

        :param symbol: Asset symbol (e.g., "BTC", "USDT").
        :returns: Current USD price.
        :raises FetcherError: On transport, API or parse failure.
        """
        fsym = self._market(symbol)
        data = await self._get_json(
            f"{self.BASE_URL}/price",
            params={"fsym": fsym, "tsyms": "USD"},
            headers=self.headers,
        )
        if not isinstance(data, dict):
            raise FetcherError(f"Unexpected CryptoCompare response: {data}")
        self._check_error(data)
        return self.validate_price(data.get("USD"), symbol)

    @property
    def supports_batch(self) -> bool:
        """CryptoCompare supports batch fetching with pricemulti endpoint."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple assets in a single API call.

        Response format: {"BTC": {"USD": 12345.67}, "ETH": {"USD": 456.78}}

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price or None.
        """
        results: dict[str, float | None] = {}
        fsyms: dict[str, str] = {}
        for symbol in symbols:
            fsym = self.SYMBOL_MAP.get(symbol.upper())
            if fsym is None:
                results[symbol] = None
            else:
                fsyms[symbol] = fsym

        if not fsyms:
            return results

        try:
            data = await self._get_json(
                f"{self.BASE_URL}/pricemulti",
                params={"fsyms": ",".join(sorted(set(fsyms.values()))), "tsyms": "USD"},
                headers=self.headers,
            )
            self._check_error(data)
        except (FetcherError, AttributeError) as e:
            logger.warning(f"[cryptocompare] Batch fetch failed: {e}")
            data = {}

        for symbol, fsym in fsyms.items():
            try:
                results[symbol] = self.validate_price(data.get(fsym, {}).get("USD"), symbol)
            except (FetcherError, AttributeError):
                results[symbol] = None

        return results
