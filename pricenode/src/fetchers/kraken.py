"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={PAIR}
Rate Limit: High (no key required)
"""

import logging

from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public API.

    Kraken quotes BTC as XBT and its stablecoin books are thin, so USDT and
    USDC are quoted at 1.0 without a request. No API key required.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    SYMBOL_MAP = {
        "BTC": "XBTUSD",
        "ETH": "ETHUSD",
        "DAI": "DAIUSD",
    }
    FIXED_PRICES = {"USDT": 1.0, "USDC": 1.0}

    async def _ticker(self, pairs: list[str]) -> dict:
        """Query the Ticker endpoint and return its ``result`` object."""
        data = await self._get_json(
            f"{self.BASE_URL}/Ticker", params={"pair": ",".join(pairs)}
        )
        errors = data.get("error") if isinstance(data, dict) else None
        if errors:
            raise FetcherError(f"Kraken API error: {', '.join(errors)}")
        result = data.get("result") if isinstance(data, dict) else None
        if not result:
            raise FetcherError(f"No result from Kraken for {pairs}")
        return result

    @staticmethod
    def _find_pair(result: dict, pair: str) -> dict | None:
        """Locate a pair in a Ticker result.

        Kraken sometimes answers with its legacy X/Z-prefixed names
        (XXBTZUSD for XBTUSD).
        """
        if pair in result:
            return result[pair]
        for key, value in result.items():
            normalized = key.replace("X", "").replace("Z", "")
            if pair in key or normalized == pair.replace("X", ""):
                return value
        return None

    async def get_price(self, symbol: str) -> float:
        """Fetch price from Kraken.

        :param symbol: Asset symbol (e.g., "BTC", "ETH").
        :returns: Current price.
        :raises FetcherError: On transport, API or parse failure.
        """
        fixed = self._fixed_price(symbol)
        if fixed is not None:
            return fixed

        pair = self._market(symbol)
        result = await self._ticker([pair])
        pair_data = self._find_pair(result, pair) or next(iter(result.values()))
        try:
            # 'c' is the last trade closed array: [price, lot volume]
            return self.validate_price(pair_data["c"][0], symbol)
        except (KeyError, IndexError, TypeError) as e:
            raise FetcherError(f"Failed to parse Kraken ticker for {pair}") from e

    @property
    def supports_batch(self) -> bool:
        """Kraken supports batch fetching multiple pairs."""
        return True

    async def get_prices(self, symbols: list[str]) -> dict[str, float | None]:
        """Fetch prices for multiple assets in a single API call.

        :param symbols: Asset symbols to fetch.
        :returns: Dict mapping symbol to price or None.
        """
        results: dict[str, float | None] = {}
        pairs: dict[str, str] = {}

        for symbol in symbols:
            fixed = self._fixed_price(symbol)
            if fixed is not None:
                results[symbol] = fixed
            elif symbol.upper() in self.SYMBOL_MAP:
                pairs[symbol] = self.SYMBOL_MAP[symbol.upper()]
            else:
                results[symbol] = None

        if not pairs:
            return results

        try:
            result = await self._ticker(list(pairs.values()))
        except FetcherError as e:
            logger.warning(f"[kraken] Batch fetch failed: {e}")
            result = {}

        for symbol, pair in pairs.items():
            pair_data = self._find_pair(result, pair)
            try:
                results[symbol] = self.validate_price(pair_data["c"][0], symbol)
            except (FetcherError, KeyError, IndexError, TypeError):
                results[symbol] = None

        return results
