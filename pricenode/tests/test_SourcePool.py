"""Unit tests for SourcePool."""

import asyncio
import time

import pytest
from conftest import FakeFetcher

from pricenode.src.fetchers import UnsupportedAssetError
from pricenode.src.SourcePool import DEFAULT_EXCLUSIONS, SourcePool
from pricenode.src.TrackedAsset import TrackedAsset

BTC = TrackedAsset("BTC")
DAI = TrackedAsset("DAI")


def make_pool(fetchers: dict[str, FakeFetcher], **kwargs) -> SourcePool:
    kwargs.setdefault("backoff_base", 0.0)
    return SourcePool(fetchers, **kwargs)


class TestSourcePoolInit:
    def test_defaults(self) -> None:
        pool = SourcePool({})
        assert pool.fetch_timeout == 10.0
        assert pool.max_attempts == 3
        assert pool.backoff_base == 1.0
        assert pool.exclusions == DEFAULT_EXCLUSIONS

    def test_dai_excluded_on_binance_and_kucoin(self) -> None:
        pool = SourcePool({})
        assert pool.is_excluded(DAI, "binance")
        assert pool.is_excluded(DAI, "kucoin")
        assert not pool.is_excluded(DAI, "coinbase")
        assert not pool.is_excluded(BTC, "binance")

    def test_invalid_parameters(self) -> None:
        with pytest.raises(ValueError, match="fetch_timeout must be positive"):
            SourcePool({}, fetch_timeout=0)
        with pytest.raises(ValueError, match="max_attempts must be at least 1"):
            SourcePool({}, max_attempts=0)
        with pytest.raises(ValueError, match="backoff_base must not be negative"):
            SourcePool({}, backoff_base=-1)


class TestSourcesFor:
    def test_skips_excluded_and_unsupported(self) -> None:
        pool = make_pool(
            {
                "binance": FakeFetcher({"DAI": 1.0}),
                "coinbase": FakeFetcher({"DAI": 1.0}),
                "kraken": FakeFetcher({"BTC": 50000.0}),
            }
        )
        assert pool.sources_for(DAI) == ["coinbase"]
        assert pool.sources_for(BTC) == ["kraken"]


class TestFetchAll:
    async def test_collects_all_sources_in_order(self) -> None:
        pool = make_pool(
            {
                "a": FakeFetcher({"BTC": 49900.0}),
                "b": FakeFetcher({"BTC": 50000.0}),
                "c": FakeFetcher({"BTC": 50100.0}),
            }
        )
        readings = await pool.fetch_all(BTC)

        assert [r.source_name for r in readings] == ["a", "b", "c"]
        assert [r.price for r in readings] == [49900.0, 50000.0, 50100.0]

    async def test_excluded_source_not_called(self) -> None:
        """Excluded pairs are skipped without calling the source."""
        binance = FakeFetcher({"DAI": 1.0})
        pool = make_pool({"binance": binance, "coinbase": FakeFetcher({"DAI": 1.0})})

        readings = await pool.fetch_all(DAI)

        assert binance.calls == 0
        assert [r.source_name for r in readings] == ["coinbase"]

    async def test_custom_exclusions(self) -> None:
        a = FakeFetcher({"BTC": 1.0})
        pool = make_pool({"a": a}, exclusions={"btc": {"a"}})

        assert await pool.fetch_all(BTC) == []
        assert a.calls == 0

    async def test_failed_source_retried_then_dropped(self) -> None:
        """A source failing every attempt yields no reading and no error."""
        failing = FakeFetcher({"BTC": 1.0}, failures=10)
        pool = make_pool({"bad": failing, "good": FakeFetcher({"BTC": 2.0})}, max_attempts=3)

        readings = await pool.fetch_all(BTC)

        assert failing.calls == 3
        assert [r.source_name for r in readings] == ["good"]

    async def test_transient_failure_recovers(self) -> None:
        flaky = FakeFetcher({"BTC": 1.0}, failures=2)
        pool = make_pool({"flaky": flaky}, max_attempts=3)

        readings = await pool.fetch_all(BTC)

        assert flaky.calls == 3
        assert len(readings) == 1

    async def test_unsupported_asset_not_retried(self) -> None:
        unsupported = FakeFetcher(
            {"BTC": 1.0}, failures=10, error=UnsupportedAssetError("delisted")
        )
        pool = make_pool({"x": unsupported}, max_attempts=3)

        assert await pool.fetch_all(BTC) == []
        assert unsupported.calls == 1

    async def test_unexpected_error_absorbed(self) -> None:
        broken = FakeFetcher({"BTC": 1.0}, failures=10, error=RuntimeError("bug"))
        pool = make_pool({"broken": broken}, max_attempts=2)

        assert await pool.fetch_all(BTC) == []

    async def test_slow_source_times_out(self) -> None:
        slow = FakeFetcher({"BTC": 1.0}, delay=5.0)
        pool = make_pool(
            {"slow": slow, "fast": FakeFetcher({"BTC": 2.0})},
            fetch_timeout=0.05,
            max_attempts=1,
        )

        readings = await pool.fetch_all(BTC)

        assert [r.source_name for r in readings] == ["fast"]

    async def test_sources_fetched_concurrently(self) -> None:
        pool = make_pool({name: FakeFetcher({"BTC": 1.0}, delay=0.2) for name in "abc"})

        start = time.perf_counter()
        readings = await pool.fetch_all(BTC)
        elapsed = time.perf_counter() - start

        assert len(readings) == 3
        assert elapsed < 0.5

    async def test_no_sources(self) -> None:
        assert await make_pool({}).fetch_all(BTC) == []


class TestProbe:
    async def test_returns_price(self) -> None:
        pool = make_pool({"a": FakeFetcher({"BTC": 50000.0})})
        assert await pool.probe("a", BTC) == 50000.0

    async def test_raises_on_failure(self) -> None:
        """Probes are single attempts and surface the error."""
        failing = FakeFetcher({"BTC": 1.0}, failures=1)
        pool = make_pool({"a": failing})

        with pytest.raises(Exception, match="source down"):
            await pool.probe("a", BTC)
        assert failing.calls == 1

    async def test_raises_on_timeout(self) -> None:
        pool = make_pool({"a": FakeFetcher({"BTC": 1.0}, delay=5.0)}, fetch_timeout=0.05)

        with pytest.raises(asyncio.TimeoutError):
            await pool.probe("a", BTC)
