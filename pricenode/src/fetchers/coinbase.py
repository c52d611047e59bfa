"""Coinbase fetcher.

Endpoint: https://api.coinbase.com/v2/exchange-rates?currency={SYMBOL}
Rate Limit: High (no key required)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for the Coinbase v2 exchange-rates API.

    The endpoint returns every conversion rate for the requested currency;
    the USD rate is used. No API key required.
    """

    name = "coinbase"
    BASE_URL = "https://api.coinbase.com/v2"

    SYMBOL_MAP = {
        "BTC": "BTC",
        "ETH": "ETH",
        "USDT": "USDT",
        "USDC": "USDC",
        "DAI": "DAI",
    }

    async def get_price(self, symbol: str) -> float:
        """Fetch price from Coinbase.

        :param symbol: Asset symbol (e.g., "BTC", "DAI").
        :returns: Current USD price.
        :raises FetcherError: On transport, API or parse failure.
        """
        currency = self._market(symbol)
        data = await self._get_json(
            f"{self.BASE_URL}/exchange-rates", params={"currency": currency}
        )
        try:
            rate = data["data"]["rates"]["USD"]
        except (KeyError, TypeError) as e:
            raise FetcherError(f"No USD rate in Coinbase response for {currency}") from e
        return self.validate_price(rate, symbol)
