"""MemoryRegistry: In-process registry with the on-chain acceptance rules.

Used for dry-run nodes and tests. Every mutation happens under a lock, so
concurrent writers for the asset are serialized (last writer wins).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence

from .PriceAggregator import deviation_bp
from .Registry import (
    STALENESS_THRESHOLD,
    InsufficientSourcesError,
    MismatchedInputError,
    NotAuthorizedError,
    PriceRegistry,
    PriceValidationError,
    PublishedPrice,
    Publisher,
    PublisherStateError,
    from_fixed_point,
    is_fresh_at,
    publishable_fixed_point,
)
from .TrackedAsset import TrackedAsset

logger = logging.getLogger(__name__)


class MemoryRegistry(PriceRegistry):
    """Registry kept in process memory.

    :ivar governors: Identities with elevated rights.
    :ivar publishers: Publisher records by identity, never removed.
    """

    def __init__(
        self,
        asset: TrackedAsset,
        governor: str,
        staleness_threshold: int = STALENESS_THRESHOLD,
        **kwargs,
    ) -> None:
        """Create an empty registry.

        :param asset: Asset held by this registry.
        :param governor: Identity seeded with elevated rights.
        :param staleness_threshold: Seconds after which a value is stale.
        :param kwargs: min_sources / max_deviation_bp overrides.
        """
        super().__init__(asset, staleness_threshold, **kwargs)
        self.governors: set[str] = {governor}
        self.publishers: dict[str, Publisher] = {}
        self._price_raw = 0
        self._timestamp = 0
        self._valid = False
        self._lock = threading.Lock()

    def ping(self) -> None:
        pass

    def read_state(self) -> PublishedPrice:
        with self._lock:
            price_raw, timestamp, valid = self._price_raw, self._timestamp, self._valid
        fresh = is_fresh_at(timestamp, time.time(), self.staleness_threshold)
        return PublishedPrice(
            price=from_fixed_point(price_raw),
            timestamp=timestamp,
            valid=valid and fresh,
        )

    def get_publisher(self, identity: str) -> Publisher | None:
        with self._lock:
            publisher = self.publishers.get(identity)
            if publisher is None:
                return None
            # Copy so callers cannot mutate registry state
            return Publisher(**vars(publisher))

    def is_governor(self, identity: str) -> bool:
        return identity in self.governors

    def get_active_publisher_count(self) -> int:
        with self._lock:
            return sum(1 for p in self.publishers.values() if p.active)

    def write(
        self,
        caller: str,
        price: float,
        source_prices: Sequence[float],
        source_names: Sequence[str],
    ) -> PublishedPrice:
        with self._lock:
            publisher = self.publishers.get(caller)
            if publisher is None or not publisher.active:
                raise NotAuthorizedError(f"{caller} is not an active publisher")
            if len(source_prices) < self.min_sources:
                raise InsufficientSourcesError(
                    f"{len(source_prices)} source prices, {self.min_sources} required"
                )
            if len(source_prices) != len(source_names):
                raise MismatchedInputError(
                    f"{len(source_prices)} source prices but {len(source_names)} source names"
                )
            price_raw = self._validate(price, source_prices)

            now = int(time.time())
            self._price_raw = price_raw
            self._timestamp = now
            self._valid = True
            publisher.last_published_at = now

        logger.debug(f"[{self.asset}] {caller} wrote {price} from {list(source_names)}")
        return self.read_state()

    def emergency_write(self, caller: str, price: float) -> PublishedPrice:
        self._require_governor(caller)
        price_raw = publishable_fixed_point(price)
        with self._lock:
            self._price_raw = price_raw
            self._timestamp = int(time.time())
            self._valid = True
        logger.debug(f"[{self.asset}] Emergency price {price} written by {caller}")
        return self.read_state()

    def invalidate(self, caller: str) -> PublishedPrice:
        self._require_governor(caller)
        with self._lock:
            self._valid = False
        logger.debug(f"[{self.asset}] Price invalidated by {caller}")
        return self.read_state()

    def register_publisher(self, caller: str, identity: str, stake_hint: int = 0) -> Publisher:
        self._require_governor(caller)
        with self._lock:
            existing = self.publishers.get(identity)
            if existing is not None and existing.active:
                raise PublisherStateError(f"{identity} is already an active publisher")
            publisher = Publisher(
                identity=identity,
                active=True,
                registered_at=int(time.time()),
                last_published_at=existing.last_published_at if existing else 0,
                stake=stake_hint,
            )
            self.publishers[identity] = publisher
        logger.debug(f"[{self.asset}] Registered publisher {identity}")
        return Publisher(**vars(publisher))

    def deactivate_publisher(self, caller: str, identity: str, reason: str) -> Publisher:
        self._require_governor(caller)
        with self._lock:
            publisher = self.publishers.get(identity)
            if publisher is None or not publisher.active:
                raise PublisherStateError(f"{identity} is not an active publisher")
            publisher.active = False
        logger.debug(f"[{self.asset}] Deactivated publisher {identity}: {reason}")
        return Publisher(**vars(publisher))

    def _require_governor(self, caller: str) -> None:
        if caller not in self.governors:
            raise NotAuthorizedError(f"{caller} is not authorized for {self.asset}")

    def _validate(self, price: float, source_prices: Sequence[float]) -> int:
        price_raw = publishable_fixed_point(price)
        for source_price in source_prices:
            publishable_fixed_point(source_price)
        try:
            deviation = deviation_bp(price, source_prices)
        except ValueError as e:
            raise PriceValidationError(str(e)) from e
        if deviation > self.max_deviation_bp:
            raise PriceValidationError(
                f"deviation {deviation}bp exceeds {self.max_deviation_bp}bp"
            )
        return price_raw
