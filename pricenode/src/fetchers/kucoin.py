"""KuCoin fetcher.

Endpoint: https://api.kucoin.com/api/v1/market/orderbook/level1?symbol={BASE}-USDT
Rate Limit: High (no key required for public market data)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KucoinFetcher(BaseFetcher):
    """Fetcher for KuCoin public market API.

    USDT markets are taken as USD. USDT is quoted at 1.0 without a request;
    DAI has no KuCoin market.
    """

    name = "kucoin"
    BASE_URL = "https://api.kucoin.com/api/v1"

    SYMBOL_MAP = {
        "BTC": "BTC-USDT",
        "ETH": "ETH-USDT",
        "USDC": "USDC-USDT",
    }
    FIXED_PRICES = {"USDT": 1.0}

    async def get_price(self, symbol: str) -> float:
        """Fetch price from KuCoin.

        :param symbol: Asset symbol (e.g., "BTC", "ETH").
        :returns: Current price.
        :raises FetcherError: On transport, API or parse failure.
        """
        fixed = self._fixed_price(symbol)
        if fixed is not None:
            return fixed

        market = self._market(symbol)
        data = await self._get_json(
            f"{self.BASE_URL}/market/orderbook/level1", params={"symbol": market}
        )
        ticker = data.get("data") if isinstance(data, dict) else None
        if not ticker or "price" not in ticker:
            raise FetcherError(f"No price data from KuCoin for {market}")
        return self.validate_price(ticker["price"], symbol)

    @property
    def supports_batch(self) -> bool:
        """KuCoin's allTickers endpoint returns every market at once."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple assets from the allTickers snapshot.

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

        last: dict[str, str] = {}
        try:
            data = await self._get_json(f"{self.BASE_URL}/market/allTickers")
            for ticker in data["data"]["ticker"]:
                if ticker.get("symbol") in markets:
                    last[ticker["symbol"]] = ticker.get("last")
        except FetcherError as e:
            logger.warning(f"[kucoin] Batch fetch failed: {e}")
        except (KeyError, TypeError) as e:
            logger.warning(f"[kucoin] Failed to parse allTickers response: {e}")

        for market, symbol in markets.items():
            try:
                results[symbol] = self.validate_price(last.get(market), symbol)
            except FetcherError:
                results[symbol] = None

        return results
