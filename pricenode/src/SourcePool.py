"""SourcePool: Concurrent per-asset fetching across all configured sources.

Architecture:
    - One fetch per source that is configured, supports the asset and is
      not excluded for it by the asset x source exclusion table
    - Every attempt runs under a hard timeout; failed attempts are retried
      with linear backoff up to a fixed attempt count
    - All fetches for one asset run concurrently and fetch_all() returns
      only after every one has succeeded or exhausted its retries
    - Failures are logged and dropped, never raised to the caller
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING

from .fetchers import UnsupportedAssetError
from .PriceAggregator import SourceReading
from .retry import linear_backoff, retry_async
from .TrackedAsset import TrackedAsset

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)

# Asset -> sources that must not be queried for it (delisted markets).
DEFAULT_EXCLUSIONS: dict[str, frozenset[str]] = {
    "DAI": frozenset({"binance", "kucoin"}),
}


class SourcePool:
    """Holds the configured sources and fetches one asset from all of them.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar exclusions: Dict mapping asset symbols to excluded source names.
    :ivar fetch_timeout: Timeout for a single fetch attempt in seconds.
    :ivar max_attempts: Attempts per source before it counts as failed.
    :ivar backoff_base: Base of the linear backoff between attempts.
    """

    def __init__(
        self,
        fetchers: Mapping[str, BaseFetcher],
        exclusions: Mapping[str, frozenset[str] | set[str]] | None = None,
        fetch_timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
    ) -> None:
        """Initialize the source pool.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param exclusions: Asset symbol -> source names to skip for it
            (default: DEFAULT_EXCLUSIONS).
        :param fetch_timeout: Timeout per attempt (default: 10.0).
        :param max_attempts: Attempts per fetch (default: 3).
        :param backoff_base: Seconds multiplied by the attempt number between
            attempts (default: 1.0).
        :raises ValueError: If parameters are invalid.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff_base < 0:
            raise ValueError("backoff_base must not be negative")

        self.fetchers = dict(fetchers)
        if exclusions is None:
            exclusions = DEFAULT_EXCLUSIONS
        self.exclusions = {
            asset.upper(): frozenset(sources) for asset, sources in exclusions.items()
        }
        self.fetch_timeout = fetch_timeout
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base

    def is_excluded(self, asset: TrackedAsset, source: str) -> bool:
        """Check the exclusion table for an asset/source pair."""
        return source in self.exclusions.get(asset.symbol, frozenset())

    def sources_for(self, asset: TrackedAsset) -> list[str]:
        """Sources that will be queried for an asset.

        :param asset: Asset to fetch.
        :returns: Source names in configuration order.
        """
        return [
            source
            for source, fetcher in self.fetchers.items()
            if not self.is_excluded(asset, source)
            and fetcher.supports_asset(asset.symbol)
        ]

    async def fetch_all(self, asset: TrackedAsset) -> list[SourceReading]:
        """Fetch the asset from every eligible source concurrently.

        :param asset: Asset to fetch.
        :returns: Successful readings, in configuration order. Never raises.
        """
        sources = self.sources_for(asset)
        if not sources:
            logger.warning(f"No sources configured for {asset}")
            return []

        results = await asyncio.gather(
            *(self._fetch_source(source, asset) for source in sources),
            return_exceptions=True,
        )

        readings: list[SourceReading] = []
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(f"[{source}] Unexpected error fetching {asset}: {result}")
            elif result is not None:
                readings.append(result)

        logger.debug(
            f"{asset}: {len(readings)}/{len(sources)} sources returned a price"
        )
        return readings

    async def _fetch_source(
        self, source: str, asset: TrackedAsset
    ) -> SourceReading | None:
        """Fetch one asset from one source with timeout and retries.

        :param source: Source name.
        :param asset: Asset to fetch.
        :returns: Reading, or None if every attempt failed.
        """
        fetcher = self.fetchers[source]
        outcome = await retry_async(
            lambda: asyncio.wait_for(
                fetcher.get_price(asset.symbol), timeout=self.fetch_timeout
            ),
            max_attempts=self.max_attempts,
            backoff=linear_backoff(self.backoff_base),
            give_up_on=(UnsupportedAssetError,),
        )

        if not outcome.ok:
            error = outcome.error
            if isinstance(error, asyncio.TimeoutError):
                error = f"timeout after {self.fetch_timeout}s"
            logger.warning(
                f"[{source}] Failed to fetch {asset} after "
                f"{outcome.attempts} attempt(s): {error}"
            )
            return None

        return SourceReading(source_name=source, price=outcome.value, observed_at=time.time())

    async def probe(self, source: str, asset: TrackedAsset) -> float:
        """Single-attempt liveness fetch used by health checks.

        :param source: Source name.
        :param asset: Reference asset to quote.
        :returns: Price returned by the source.
        :raises Exception: Whatever the fetch raised, or asyncio.TimeoutError.
        """
        return await asyncio.wait_for(
            self.fetchers[source].get_price(asset.symbol), timeout=self.fetch_timeout
        )
