"""OKX fetcher.

Endpoint: https://www.okx.com/api/v5/market/ticker?instId={BASE}-USDT
Rate Limit: 20 requests / 2s (no key required)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class OKXFetcher(BaseFetcher):
    """Fetcher for OKX v5 public market API.

    OKX has no batch ticker query for a chosen set of instruments, so the
    default per-symbol get_prices() is used. USDT is quoted at 1.0.
    """

    name = "okx"
    BASE_URL = "https://www.okx.com/api/v5"

    SYMBOL_MAP = {
        "BTC": "BTC-USDT",
        "ETH": "ETH-USDT",
        "USDC": "USDC-USDT",
        "DAI": "DAI-USDT",
    }
    FIXED_PRICES = {"USDT": 1.0}

    async def get_price(self, symbol: str) -> float:
        """Fetch price from OKX.

        :param symbol: Asset symbol (e.g., "BTC", "DAI").
        :returns: Current price.
        :raises FetcherError: On transport, API or parse failure.
        """
        fixed = self._fixed_price(symbol)
        if fixed is not None:
            return fixed

        inst_id = self._market(symbol)
        data = await self._get_json(
            f"{self.BASE_URL}/market/ticker", params={"instId": inst_id}
        )
        if not isinstance(data, dict) or data.get("code") != "0":
            message = data.get("msg") if isinstance(data, dict) else data
            raise FetcherError(f"OKX API error for {inst_id}: {message or 'Unknown error'}")
        tickers = data.get("data") or []
        if not tickers:
            raise FetcherError(f"No price data from OKX for {inst_id}")
        return self.validate_price(tickers[0].get("last"), symbol)
