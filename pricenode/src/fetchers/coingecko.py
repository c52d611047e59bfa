"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={id}&vs_currencies=usd
Rate Limit: 30 calls/min (free), higher with API key
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko API.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"

    # Map asset symbols to CoinGecko IDs
    SYMBOL_MAP = {
        "BTC": "bitcoin",
        "ETH": "ethereum",
        "USDT": "tether",
        "USDC": "usd-coin",
        "DAI": "dai",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]  # Strip "demo:" prefix
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        # Demo keys use free URL, pro keys use pro URL
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def headers(self) -> dict[str, str] | None:
        """Return the API key header, if a key is configured."""
        if not self.has_api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return {header_name: self.api_key}

    async def _simple_price(self, coin_ids: list[str]) -> dict:
        data = await self._get_json(
            f"{self.base_url}/simple/price",
            params={"ids": ",".join(coin_ids), "vs_currencies": "usd"},
            headers=self.headers,
        )
        if not isinstance(data, dict):
            raise FetcherError(f"Unexpected CoinGecko response: {data}")
        return data

    async def get_price(self, symbol: str) -> float:
        """Fetch price from CoinGecko.

        :param symbol: Asset symbol (e.g., "BTC", "USDC").
        :returns: Current USD price.
        :raises FetcherError: On transport, API or parse failure.
        """
        coin_id = self._market(symbol)
        data = await self._simple_price([coin_id])
        usd = data.get(coin_id, {}).get("usd")
        if usd is None:
            raise FetcherError(f"Coin {coin_id} not in CoinGecko response: {data}")
        return self.validate_price(usd, symbol)

    @property
    def supports_batch(self) -> bool:
        """CoinGecko supports batch fetching multiple coins in one request."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple assets in a single API call.

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price or None.
        """
        results: dict[str, float | None] = {}
        coin_ids: dict[str, str] = {}
        for symbol in symbols:
            coin_id = self.SYMBOL_MAP.get(symbol.upper())
            if coin_id is None:
                results[symbol] = None
            else:
                coin_ids[symbol] = coin_id

        if not coin_ids:
            return results

        try:
            data = await self._simple_price(sorted(set(coin_ids.values())))
        except FetcherError as e:
            logger.warning(f"[coingecko] Batch fetch failed: {e}")
            data = {}

        for symbol, coin_id in coin_ids.items():
            try:
                results[symbol] = self.validate_price(
                    data.get(coin_id, {}).get("usd"), symbol
                )
            except FetcherError:
                results[symbol] = None

        return results
