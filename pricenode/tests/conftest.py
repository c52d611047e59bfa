"""Shared fixtures for the pricenode test suite."""

import asyncio

import pytest

from pricenode.src.fetchers import BaseFetcher, FetcherError
from pricenode.src.RegistryMemory import MemoryRegistry
from pricenode.src.TrackedAsset import TrackedAsset

GOVERNOR = "governor"
NODE = "node-1"


class FakeFetcher(BaseFetcher):
    """In-memory source: quotes fixed prices, optionally failing or slow.

    :ivar prices: Asset symbol -> price returned.
    :ivar failures: Number of initial calls that raise.
    :ivar delay: Seconds each call takes.
    :ivar error: Exception raised by failing calls.
    :ivar calls: Number of get_price() calls made.
    """

    name = "fake"

    def __init__(
        self,
        prices: dict[str, float],
        failures: int = 0,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        super().__init__()
        self.prices = prices
        self.failures = failures
        self.delay = delay
        self.error = error or FetcherError("source down")
        self.calls = 0

    def supports_asset(self, symbol: str) -> bool:
        return symbol in self.prices

    async def get_price(self, symbol: str) -> float:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.calls <= self.failures:
            raise self.error
        return self.prices[symbol]


@pytest.fixture
def btc() -> TrackedAsset:
    return TrackedAsset("BTC")


@pytest.fixture
def registry(btc: TrackedAsset) -> MemoryRegistry:
    """BTC registry governed by GOVERNOR with NODE registered as publisher."""
    registry = MemoryRegistry(btc, governor=GOVERNOR)
    registry.register_publisher(GOVERNOR, NODE)
    return registry
