"""GeckoTerminal fetcher.

DEX prices for Ethereum mainnet tokens, identified by contract address.

Endpoint: https://api.geckoterminal.com/api/v2/simple/networks/eth/token_price/{addresses}
Rate Limit: 30 calls/min (no key required)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class GeckoTerminalFetcher(BaseFetcher):
    """Fetcher for the GeckoTerminal token price API.

    BTC is priced through WBTC and ETH through WETH.
    """

    name = "geckoterminal"
    BASE_URL = "https://api.geckoterminal.com/api/v2"
    NETWORK = "eth"
    DEFAULT_TIMEOUT = 15.0

    SYMBOL_MAP = {
        "BTC": "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599",  # WBTC
        "ETH": "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",  # WETH
        "USDT": "0xdac17f958d2ee523a2206206994597c13d831ec7",
        "USDC": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
        "DAI": "0x6b175474e89094c44da98b954eedeac495271d0f",
    }

    async def _token_prices(self, addresses: list[str]) -> dict:
        url = (
            f"{self.BASE_URL}/simple/networks/{self.NETWORK}"
            f"/token_price/{','.join(addresses)}"
        )
        data = await self._get_json(url, headers={"Accept": "application/json"})
        try:
            return data["data"]["attributes"]["token_prices"] or {}
        except (KeyError, TypeError) as e:
            raise FetcherError(f"Unexpected GeckoTerminal response: {data}") from e

    async def get_price(self, symbol: str) -> float:
        """Fetch price from GeckoTerminal.

        :param symbol: Asset symbol (e.g., "ETH").
        :returns: Current USD price.
        :raises FetcherError: On transport, API or parse failure.
        """
        address = self._market(symbol)
        prices = await self._token_prices([address])
        if address not in prices:
            raise FetcherError(f"No price data from GeckoTerminal for {symbol}")
        return self.validate_price(prices[address], symbol)

    @property
    def supports_batch(self) -> bool:
        """GeckoTerminal accepts comma-separated token addresses."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple tokens in a single API call.

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price or None.
        """
        results: dict[str, float | None] = {}
        addresses: dict[str, str] = {}
        for symbol in symbols:
            address = self.SYMBOL_MAP.get(symbol.upper())
            if address is None:
                results[symbol] = None
            else:
                addresses[address] = symbol

        if not addresses:
            return results

        try:
            prices = await self._token_prices(list(addresses))
        except FetcherError as e:
            logger.warning(f"[geckoterminal] Batch fetch failed: {e}")
            prices = {}

        for address, symbol in addresses.items():
            try:
                results[symbol] = self.validate_price(prices.get(address), symbol)
            except FetcherError:
                results[symbol] = None

        return results
