"""PriceAggregator: Median consensus with a basis-point deviation policy.

Algorithm:
    1. Reject if fewer than min_sources readings are available
    2. Take the median of the reading prices as the candidate price
    3. Reject if the candidate deviates from the median by more than
       max_deviation_bp (always within bounds here; the same check is
       re-applied on publication to caller-supplied prices)
    4. Reject if the candidate is not positive
    5. Warn (without rejecting) on a large move against the previous
       accepted price

.. code-block:: python

    >>> aggregator = PriceAggregator()
    >>> readings = [SourceReading("a", 49900.0), SourceReading("b", 50000.0),
    ...             SourceReading("c", 50100.0)]
    >>> result = aggregator.aggregate(TrackedAsset("BTC"), readings)
    >>> result.accepted, result.price
    (True, 50000.0)
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from statistics import median as _median

from .TrackedAsset import TrackedAsset

logger = logging.getLogger(__name__)

MIN_SOURCES = 3
MAX_DEVIATION_BP = 1000  # 10%
BASIS_POINTS = 10_000

# Large-move anomaly signal (logged, never a rejection)
LARGE_MOVE_PERCENT = 10.0
LARGE_MOVE_WINDOW_SECONDS = 300


def median(values: Iterable[float]) -> float:
    """Median of a non-empty collection.

    Odd count: the middle element after sorting. Even count: the mean of
    the two middle elements.

    :raises ValueError: If values is empty.
    """
    values = list(values)
    if not values:
        raise ValueError("median of empty collection")
    return _median(values)


def deviation_bp(value: float, reference_prices: Iterable[float]) -> int:
    """Deviation of value from the median of reference_prices, in basis points.

    Truncated towards zero, matching the integer arithmetic of the registry.

    :param value: Candidate price.
    :param reference_prices: Prices the candidate is checked against.
    :returns: ``|value - median| / median * 10000`` as an int.
    :raises ValueError: If reference_prices is empty, its median is not
        positive, or the deviation is not finite.

    .. code-block:: python

        >>> deviation_bp(55000, [50000, 50000, 50000])
        1000
    """
    reference = median(reference_prices)
    if reference <= 0:
        raise ValueError(f"reference median must be positive, got {reference}")
    deviation = abs(value - reference) * BASIS_POINTS / reference
    if not math.isfinite(deviation):
        raise ValueError(f"deviation of {value} from {reference} is not finite")
    return int(deviation)


class RejectionReason(str, Enum):
    """Why a consensus round was not accepted."""

    INSUFFICIENT_SOURCES = "insufficient_sources"
    VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class SourceReading:
    """One successful price observation from one source.

    :ivar source_name: Fetcher name (e.g., "kraken").
    :ivar price: Observed USD price.
    :ivar observed_at: Unix timestamp of the observation.
    """

    source_name: str
    price: float
    observed_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PriceSnapshot:
    """Last accepted price for an asset, the baseline for the next round.

    :ivar price: Accepted consensus price.
    :ivar timestamp: Unix timestamp when it was computed.
    :ivar sources: Number of contributing sources.
    """

    price: float
    timestamp: float
    sources: int = 0


@dataclass(frozen=True)
class ConsensusResult:
    """Result of one aggregation round for one asset.

    :ivar asset: Asset the round was for.
    :ivar price: Median of the contributing readings, or None if too few.
    :ivar contributing_sources: Readings used, in the order received.
    :ivar computed_at: Unix timestamp of the aggregation.
    :ivar accepted: True if every acceptance check passed.
    :ivar rejection_reason: Set when not accepted.
    :ivar detail: Human-readable explanation of a rejection.
    """

    asset: TrackedAsset
    price: float | None
    contributing_sources: tuple[SourceReading, ...]
    computed_at: float
    accepted: bool
    rejection_reason: RejectionReason | None = None
    detail: str = ""

    @property
    def source_count(self) -> int:
        return len(self.contributing_sources)

    @property
    def source_prices(self) -> list[float]:
        return [r.price for r in self.contributing_sources]

    @property
    def source_names(self) -> list[str]:
        return [r.source_name for r in self.contributing_sources]


class PriceAggregator:
    """Reconciles per-source readings into one consensus price.

    :ivar min_sources: Minimum readings required for acceptance.
    :ivar max_deviation_bp: Max allowed deviation of the candidate from the median.
    :ivar large_move_percent: Change vs previous price that triggers a warning.
    :ivar large_move_window: Seconds within which a large move is reported.
    """

    def __init__(
        self,
        min_sources: int = MIN_SOURCES,
        max_deviation_bp: int = MAX_DEVIATION_BP,
        large_move_percent: float = LARGE_MOVE_PERCENT,
        large_move_window: float = LARGE_MOVE_WINDOW_SECONDS,
    ) -> None:
        """Initialize the aggregator.

        :param min_sources: Minimum number of readings required (default 3).
        :param max_deviation_bp: Maximum deviation from the median in basis
            points (default 1000 = 10%).
        :param large_move_percent: Warn when the new price moves more than this
            against the previous accepted price (default 10%).
        :param large_move_window: Only warn if the previous price is younger
            than this many seconds (default 300).
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if max_deviation_bp <= 0:
            raise ValueError("max_deviation_bp must be positive")
        if large_move_percent <= 0:
            raise ValueError("large_move_percent must be positive")

        self.min_sources = min_sources
        self.max_deviation_bp = max_deviation_bp
        self.large_move_percent = large_move_percent
        self.large_move_window = large_move_window

    def aggregate(
        self,
        asset: TrackedAsset,
        readings: Sequence[SourceReading],
        *,
        previous: PriceSnapshot | None = None,
    ) -> ConsensusResult:
        """Compute the consensus price for one round.

        :param asset: Asset being priced.
        :param readings: Successful readings gathered in this round.
        :param previous: Last accepted price for the large-move warning.
            None skips the check (first round).
        :returns: ConsensusResult, accepted or with a rejection reason.
        """
        now = time.time()
        readings = tuple(readings)

        if len(readings) < self.min_sources:
            return ConsensusResult(
                asset=asset,
                price=None,
                contributing_sources=readings,
                computed_at=now,
                accepted=False,
                rejection_reason=RejectionReason.INSUFFICIENT_SOURCES,
                detail=f"{len(readings)} of {self.min_sources} required sources",
            )

        prices = [r.price for r in readings]
        candidate = median(prices)

        if candidate <= 0:
            return self._rejected(asset, candidate, readings, now, f"non-positive price {candidate}")

        deviation = deviation_bp(candidate, prices)
        if deviation > self.max_deviation_bp:
            return self._rejected(
                asset,
                candidate,
                readings,
                now,
                f"deviation {deviation}bp exceeds {self.max_deviation_bp}bp",
            )

        if previous is not None:
            self._check_large_move(asset, candidate, previous, now)

        return ConsensusResult(
            asset=asset,
            price=candidate,
            contributing_sources=readings,
            computed_at=now,
            accepted=True,
        )

    def _rejected(
        self,
        asset: TrackedAsset,
        price: float,
        readings: tuple[SourceReading, ...],
        now: float,
        detail: str,
    ) -> ConsensusResult:
        return ConsensusResult(
            asset=asset,
            price=price,
            contributing_sources=readings,
            computed_at=now,
            accepted=False,
            rejection_reason=RejectionReason.VALIDATION_FAILED,
            detail=detail,
        )

    def _check_large_move(
        self,
        asset: TrackedAsset,
        price: float,
        previous: PriceSnapshot,
        now: float,
    ) -> None:
        if previous.price <= 0:
            return
        change = abs(price - previous.price) / previous.price * 100
        age = now - previous.timestamp
        if change > self.large_move_percent and age < self.large_move_window:
            logger.warning(
                f"Large price movement for {asset}: {change:.2f}% in {age:.0f}s "
                f"(${previous.price:.6f} -> ${price:.6f})"
            )
