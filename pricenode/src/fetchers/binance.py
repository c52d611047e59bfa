"""Binance fetcher.

Binance lists USDT markets for the tracked assets; a USDT quote is taken
as the USD price. USDT itself is quoted at 1.0 without a request, and DAI
is delisted, so it is reported as unsupported.

Endpoint: https://api.binance.com/api/v3/ticker/price
Rate Limit: High (no key required for public endpoints)
"""

import json
import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Fetcher for the Binance spot ticker API.

    Batch requests use the ``symbols`` parameter of /ticker/price, which
    accepts a JSON array of markets.
    """

    name = "binance"
    BASE_URL = "https://api.binance.com/api/v3"

    SYMBOL_MAP = {
        "BTC": "BTCUSDT",
        "ETH": "ETHUSDT",
        "USDC": "USDCUSDT",
    }
    FIXED_PRICES = {"USDT": 1.0}

    async def get_price(self, symbol: str) -> float:
        """Fetch price from Binance.

        :param symbol: Asset symbol (e.g., "BTC", "ETH").
        :returns: Current price.
        :raises FetcherError: On transport, API or parse failure.
        """
        fixed = self._fixed_price(symbol)
        if fixed is not None:
            return fixed

        market = self._market(symbol)
        data = await self._get_json(
            f"{self.BASE_URL}/ticker/price", params={"symbol": market}
        )
        if not isinstance(data, dict) or "price" not in data:
            raise FetcherError(f"No price in Binance response for {market}: {data}")
        return self.validate_price(data["price"], symbol)

    @property
    def supports_batch(self) -> bool:
        """Binance supports batch fetching multiple symbols in one request."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple assets in a single API call.

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price or None.
        """
        results: dict[str, float | None] = {}
        markets: dict[str, str] = {}

        for symbol in symbols:
            fixed = self._fixed_price(symbol)
            if fixed is not None:
                results[symbol] = fixed
            elif symbol.upper() in self.SYMBOL_MAP:
                markets[self.SYMBOL_MAP[symbol.upper()]] = symbol
            else:
                results[symbol] = None

        if not markets:
            return results

        try:
            data = await self._get_json(
                f"{self.BASE_URL}/ticker/price",
                params={"symbols": json.dumps(list(markets))},
            )
            prices = {
                item["symbol"]: item["price"]
                for item in data
                if "symbol" in item and "price" in item
            }
        except FetcherError as e:
            logger.warning(f"[binance] Batch fetch failed for {list(markets)}: {e}")
            prices = {}
        except (KeyError, TypeError) as e:
            logger.warning(f"[binance] Failed to parse batch response: {e}")
            prices = {}

        for market, symbol in markets.items():
            try:
                results[symbol] = self.validate_price(prices.get(market), symbol)
            except FetcherError:
                results[symbol] = None

        return results
