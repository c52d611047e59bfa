"""PriceOracle: Main orchestrator of a price-publishing node.

Each tracked asset goes through an independent round per update cycle:

    Idle -> Fetching -> Aggregating -> Publishing -> Idle

Architecture:
    - SourcePool fetches the asset from every eligible source concurrently
    - PriceAggregator turns the readings into a median consensus and
      accepts or rejects it
    - PublicationGate writes accepted prices to the asset's registry; the
      blocking registry call runs in a worker thread so the confirmation wait
      only holds up that asset
    - Rejected or failed rounds increment the asset's FailureTracker counter;
      every alert_threshold consecutive failures an alert is sent
    - Unauthorized publishes alert immediately, since retrying cannot help
    - A slower independent timer probes the registry and every source
    - Every cycle is spawned as its own task, so a slow round never delays
      the next tick; stop() lets in-flight rounds finish before returning
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .FailureTracker import FailureTracker
from .PriceAggregator import ConsensusResult, PriceAggregator, PriceSnapshot
from .PublicationGate import PublicationGate, PublishError, PublishResult
from .SourcePool import SourcePool
from .TrackedAsset import TrackedAsset
from .alerts import AlertSink
from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_INTERVAL = 60  # seconds
DEFAULT_HEALTH_INTERVAL = 300  # seconds

# Asset every source is asked for during health checks
HEALTH_REFERENCE_ASSET = TrackedAsset("BTC")


class RoundState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    PUBLISHING = "publishing"


@dataclass(frozen=True)
class RoundOutcome:
    """Result of one asset's round.

    :ivar asset: Asset the round was for.
    :ivar accepted: True if the price was published.
    :ivar consensus: Aggregation result, None if the round failed before it.
    :ivar publish: Gate result, None if the round never reached publishing.
    :ivar error: Cause of a failed round.
    """

    asset: TrackedAsset
    accepted: bool
    consensus: ConsensusResult | None = None
    publish: PublishResult | None = None
    error: str = ""


class PriceOracle:
    """Process-wide node context: owns the timers, last prices and failure counts.

    :ivar node_id: Node name used in logs and status.
    :ivar identity: Identity the node publishes as.
    :ivar assets: Tracked assets.
    :ivar source_pool: Configured price sources.
    :ivar gate: Write path to the registries.
    :ivar aggregator: Consensus policy.
    :ivar failure_tracker: Consecutive failure counts per asset.
    :ivar alert_sink: Where alerts go.
    :ivar update_interval: Seconds between update cycles.
    :ivar health_interval: Seconds between health checks.
    :ivar last_prices: Last accepted price per asset.
    :ivar round_states: Current round state per asset.
    """

    def __init__(
        self,
        node_id: str,
        assets: Sequence[TrackedAsset],
        source_pool: SourcePool,
        gate: PublicationGate,
        aggregator: PriceAggregator | None = None,
        failure_tracker: FailureTracker | None = None,
        alert_sink: AlertSink | None = None,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        health_interval: float = DEFAULT_HEALTH_INTERVAL,
        health_reference_asset: TrackedAsset = HEALTH_REFERENCE_ASSET,
        identity: str | None = None,
    ) -> None:
        """Initialize the node.

        :param node_id: Node name.
        :param assets: Assets to track; each needs a registry in the gate.
        :param source_pool: Price sources.
        :param gate: Publication gate holding the registries.
        :param aggregator: Consensus policy (default: PriceAggregator()).
        :param failure_tracker: Failure counter (default: threshold 5).
        :param alert_sink: Alert destination (default: log only).
        :param update_interval: Seconds between update cycles (minimum 1).
        :param health_interval: Seconds between health checks (minimum 1).
        :param health_reference_asset: Asset every source is probed with.
        :param identity: Publishing identity, the signer address for contract
            registries (default: node_id).
        :raises ValueError: If no assets are given or an asset has no registry.
        """
        if not assets:
            raise ValueError("At least one asset must be tracked")
        missing = [str(a) for a in assets if a not in gate.registries]
        if missing:
            raise ValueError(f"No registry configured for assets: {missing}")

        self.node_id = node_id
        self.identity = identity or node_id
        self.assets = list(assets)
        self.source_pool = source_pool
        self.gate = gate
        self.aggregator = aggregator or PriceAggregator()
        self.failure_tracker = failure_tracker or FailureTracker()
        self.alert_sink = alert_sink or AlertSink()
        self.update_interval = max(1, update_interval)
        self.health_interval = max(1, health_interval)
        self.health_reference_asset = health_reference_asset

        self.last_prices: dict[TrackedAsset, PriceSnapshot] = {}
        self.round_states: dict[TrackedAsset, RoundState] = {
            asset: RoundState.IDLE for asset in self.assets
        }
        self.is_running = False
        self._started_at: float | None = None
        self._stop_event = asyncio.Event()
        self._tasks: set[asyncio.Task[Any]] = set()

        logger.info(
            f"PriceOracle initialized: node={node_id}, "
            f"assets={[str(a) for a in self.assets]}, "
            f"sources={list(source_pool.fetchers)}, "
            f"update_interval={self.update_interval}s, "
            f"health_interval={self.health_interval}s"
        )

    async def update_asset_price(self, asset: TrackedAsset) -> RoundOutcome:
        """Run one fetch -> aggregate -> publish round for an asset.

        Never raises; a failed round is recorded and returned.
        """
        try:
            self.round_states[asset] = RoundState.FETCHING
            readings = await self.source_pool.fetch_all(asset)

            self.round_states[asset] = RoundState.AGGREGATING
            consensus = self.aggregator.aggregate(
                asset, readings, previous=self.last_prices.get(asset)
            )
            if not consensus.accepted:
                return await self._round_failed(
                    RoundOutcome(
                        asset=asset,
                        accepted=False,
                        consensus=consensus,
                        error=f"{consensus.rejection_reason.value}: {consensus.detail}",
                    )
                )

            self.round_states[asset] = RoundState.PUBLISHING
            result = await asyncio.to_thread(
                self.gate.publish,
                asset,
                self.identity,
                consensus.price,
                consensus.contributing_sources,
            )
            if not result.ok:
                if result.error == PublishError.NOT_AUTHORIZED:
                    await self.alert_sink.send_alert(
                        f"Node {self.node_id} ({self.identity}) is not authorized "
                        f"to publish {asset}: {result.detail}"
                    )
                return await self._round_failed(
                    RoundOutcome(
                        asset=asset,
                        accepted=False,
                        consensus=consensus,
                        publish=result,
                        error=f"{result.error.value}: {result.detail}",
                    )
                )
        except Exception as exc:  # a failed round never propagates to the cycle
            return await self._round_failed(
                RoundOutcome(asset=asset, accepted=False, error=f"unexpected error: {exc}")
            )
        finally:
            self.round_states[asset] = RoundState.IDLE

        self.failure_tracker.record_success(str(asset))
        self._remember_price(asset, consensus)
        logger.info(
            f"Updated {asset}: ${consensus.price:,.6f} "
            f"({consensus.source_count} sources: {', '.join(consensus.source_names)})"
        )
        return RoundOutcome(asset=asset, accepted=True, consensus=consensus, publish=result)

    async def update_all_prices(self) -> dict[TrackedAsset, RoundOutcome]:
        """Run one round for every tracked asset concurrently.

        :returns: Outcome per asset.
        """
        logger.info("Updating all asset prices...")
        outcomes = await asyncio.gather(*(self.update_asset_price(a) for a in self.assets))
        accepted = sum(1 for o in outcomes if o.accepted)
        logger.info(f"Update cycle done: {accepted}/{len(outcomes)} assets published")
        return {o.asset: o for o in outcomes}

    async def health_check(self) -> list[str]:
        """Probe the registries and every price source.

        All problems found are reported in a single alert.

        :returns: List of issues, empty if healthy.
        """
        logger.info("Performing health check...")
        issues: list[str] = []

        try:
            await asyncio.to_thread(self.gate.ping)
        except Exception as e:
            issues.append(f"Registry connection failed ({e})")

        for asset in self.assets:
            try:
                await asyncio.to_thread(self.gate.read_state, asset)
            except Exception as e:
                issues.append(f"Registry for {asset} not responding ({e})")

        sources = list(self.source_pool.fetchers)
        results = await asyncio.gather(
            *(self.source_pool.probe(s, self.health_reference_asset) for s in sources),
            return_exceptions=True,
        )
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, BaseException):
                issues.append(f"Price source {source} not responding")

        if issues:
            logger.error(f"Health check failed: {', '.join(issues)}")
            await self.alert_sink.send_alert(f"Health check issues: {', '.join(issues)}")
        else:
            logger.info("Health check passed")
        return issues

    async def start(self) -> None:
        """Mark the node running and run the first update cycle."""
        logger.info(f"Starting price node {self.node_id}...")
        self.is_running = True
        self._started_at = time.time()
        self._stop_event.clear()
        await self.update_all_prices()
        logger.info("Price node started")

    def stop(self) -> None:
        """Stop scheduling new cycles; in-flight rounds are allowed to finish."""
        if not self._stop_event.is_set():
            logger.info("Stopping price node...")
        self._stop_event.set()

    async def run(self) -> None:
        """Start the node and drive the update and health timers until stop()."""
        await self.start()
        try:
            await asyncio.gather(
                self._schedule(self.update_interval, self.update_all_prices),
                self._schedule(self.health_interval, self.health_check),
            )
        finally:
            if self._tasks:
                logger.info(f"Waiting for {len(self._tasks)} in-flight task(s)...")
                await asyncio.gather(*self._tasks, return_exceptions=True)
            self.is_running = False
            await BaseFetcher.close_shared_client()
            logger.info("Price node stopped")

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the node for operators."""
        return {
            "node_id": self.node_id,
            "identity": self.identity,
            "is_running": self.is_running,
            "last_prices": {
                str(asset): {
                    "price": snapshot.price,
                    "timestamp": snapshot.timestamp,
                    "sources": snapshot.sources,
                }
                for asset, snapshot in self.last_prices.items()
            },
            "failure_count": self.failure_tracker.get_all_counts(),
            "round_states": {str(a): s.value for a, s in self.round_states.items()},
            "uptime": time.time() - self._started_at if self._started_at else 0.0,
        }

    async def _schedule(self, interval: float, job: Callable[[], Awaitable[Any]]) -> None:
        while not await self._wait_for_stop(interval):
            task = asyncio.create_task(job())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; True if stop() was called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _round_failed(self, outcome: RoundOutcome) -> RoundOutcome:
        asset = str(outcome.asset)
        logger.error(f"Failed to update {asset}: {outcome.error}")
        if self.failure_tracker.record_failure(asset, outcome.error):
            count = self.failure_tracker.get_failure_count(asset)
            await self.alert_sink.send_alert(
                f"{asset} price updates failing repeatedly "
                f"({count} consecutive failures, last: {outcome.error})"
            )
        return outcome

    def _remember_price(self, asset: TrackedAsset, consensus: ConsensusResult) -> None:
        previous = self.last_prices.get(asset)
        # Overlapping rounds may finish out of order
        if previous is not None and previous.timestamp >= consensus.computed_at:
            return
        self.last_prices[asset] = PriceSnapshot(
            price=consensus.price,
            timestamp=consensus.computed_at,
            sources=consensus.source_count,
        )
