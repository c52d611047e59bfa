"""Registry: Abstract interface to the store of the last accepted price.

One registry instance holds the published value of one asset, together
with the authorization state that gates writes to it:

- governors ("wards"): identities allowed to manage publishers and to use
  the emergency write and invalidation paths; the deploying identity is
  seeded as the first governor
- publishers: identities allowed to submit multi-source price updates

Prices cross the registry boundary as fixed-point integers with 18 decimals.
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3

from .PriceAggregator import MAX_DEVIATION_BP, MIN_SOURCES
from .TrackedAsset import TrackedAsset

PRICE_DECIMALS = 18
STALENESS_THRESHOLD = 3600  # seconds


def to_fixed_point(price: float) -> int:
    """Convert a price to an 18-decimal fixed-point integer.

    The decimal string form of the float is scaled, so 49900.1 becomes
    exactly 49900100000000000000000.

    :raises ValueError: If the price is negative, not finite or does not fit
        a uint256 once scaled.
    """
    if not math.isfinite(price) or price < 0:
        raise ValueError(f"price must be finite and not negative: {price}")
    return int(Web3.to_wei(Decimal(str(price)), "ether"))


def from_fixed_point(raw: int) -> float:
    """Convert an 18-decimal fixed-point integer back to a float price."""
    return float(Web3.from_wei(raw, "ether"))


class RegistryError(Exception):
    """Base exception for registry failures."""

    pass


class RegistryUnavailableError(RegistryError):
    """Raised when the registry cannot be reached or a write transport fails."""

    pass


class NotAuthorizedError(RegistryError):
    """Raised when the caller lacks the rights for an operation."""

    pass


class InsufficientSourcesError(RegistryError):
    """Raised when a write carries fewer source prices than required."""

    pass


class MismatchedInputError(RegistryError):
    """Raised when source prices and source names differ in length."""

    pass


class PriceValidationError(RegistryError):
    """Raised when a price is not positive or deviates too far from its sources."""

    pass


class PublisherStateError(RegistryError):
    """Raised when registering an active publisher or deactivating an inactive one."""

    pass


class StaleReadError(RegistryError):
    """Raised by read_price() when the published value is invalid or stale."""

    pass


def publishable_fixed_point(price: float) -> int:
    """Fixed-point value of a price that may be written to a registry.

    The price must stay positive after scaling to 18 decimals and the
    scaled value must fit a uint256.

    :raises PriceValidationError: If the price cannot be published.
    """
    if not price > 0:
        raise PriceValidationError(f"price must be positive, got {price}")
    try:
        raw = to_fixed_point(price)
    except ValueError as e:
        raise PriceValidationError(str(e)) from None
    if raw == 0:
        raise PriceValidationError(f"price {price} is zero at {PRICE_DECIMALS} decimals")
    return raw


@dataclass(frozen=True)
class PublishedPrice:
    """Registry state for one asset.

    :ivar price: Last written price (0.0 if never written).
    :ivar timestamp: Unix timestamp of the last write (0 if never written).
    :ivar valid: True only if the value was not invalidated and is fresh
        at read time.
    """

    price: float
    timestamp: int
    valid: bool


@dataclass
class Publisher:
    """Authorization record of an identity allowed to publish.

    Records are deactivated, never deleted.

    :ivar identity: Publisher address or name.
    :ivar active: Whether writes from this identity are accepted.
    :ivar registered_at: Unix timestamp of the (latest) registration.
    :ivar last_published_at: Unix timestamp of the last accepted write, 0 if none.
    :ivar stake: Informational stake value given at registration.
    """

    identity: str
    active: bool
    registered_at: int
    last_published_at: int = 0
    stake: int = 0


def is_fresh_at(timestamp: int, now: float, staleness_threshold: int) -> bool:
    """Freshness rule shared by every registry: written, and not older than the threshold."""
    return timestamp > 0 and now - timestamp <= staleness_threshold


class PriceRegistry(ABC):
    """Abstract base class for registry implementations.

    :ivar asset: Asset whose price this registry holds.
    :ivar staleness_threshold: Seconds after which a value is stale.
    :ivar min_sources: Minimum source prices required by write().
    :ivar max_deviation_bp: Max deviation enforced by write().
    """

    def __init__(
        self,
        asset: TrackedAsset,
        staleness_threshold: int = STALENESS_THRESHOLD,
        min_sources: int = MIN_SOURCES,
        max_deviation_bp: int = MAX_DEVIATION_BP,
    ) -> None:
        self.asset = asset
        self.staleness_threshold = staleness_threshold
        self.min_sources = min_sources
        self.max_deviation_bp = max_deviation_bp

    @property
    def asset_key(self) -> bytes:
        """bytes32 key of the asset held by this registry."""
        return self.asset.asset_key

    @abstractmethod
    def ping(self) -> None:
        """Check that the registry is reachable.

        :raises RegistryUnavailableError: If it is not.
        """
        pass

    @abstractmethod
    def read_state(self) -> PublishedPrice:
        """Read the current published price, timestamp and validity."""
        pass

    def is_fresh(self) -> bool:
        """Check if the last write is within the staleness threshold."""
        return is_fresh_at(self.read_state().timestamp, time.time(), self.staleness_threshold)

    def read_price(self) -> float:
        """Read the price for consumption.

        :returns: The published price.
        :raises StaleReadError: If the value is invalidated, never written or stale.
        """
        state = self.read_state()
        if not state.valid:
            raise StaleReadError(
                f"{self.asset} price is not valid (timestamp={state.timestamp})"
            )
        return state.price

    @abstractmethod
    def get_publisher(self, identity: str) -> Publisher | None:
        """Look up a publisher record; None if the identity was never registered."""
        pass

    def is_active_publisher(self, identity: str) -> bool:
        publisher = self.get_publisher(identity)
        return publisher is not None and publisher.active

    @abstractmethod
    def is_governor(self, identity: str) -> bool:
        """Check if the identity holds elevated (governance) rights."""
        pass

    @abstractmethod
    def get_active_publisher_count(self) -> int:
        pass

    @abstractmethod
    def write(
        self,
        caller: str,
        price: float,
        source_prices: Sequence[float],
        source_names: Sequence[str],
    ) -> PublishedPrice:
        """Multi-source price update.

        :param caller: Identity submitting the update (an active publisher).
        :param price: Candidate price.
        :param source_prices: Per-source prices the candidate is checked against.
        :param source_names: Source names, parallel to source_prices.
        :returns: The new registry state.
        :raises NotAuthorizedError: If caller is not an active publisher.
        :raises InsufficientSourcesError: If too few source prices are given.
        :raises MismatchedInputError: If the two lists differ in length.
        :raises PriceValidationError: If the price fails validation.
        :raises RegistryUnavailableError: If the write transport fails.
        """
        pass

    @abstractmethod
    def emergency_write(self, caller: str, price: float) -> PublishedPrice:
        """Governor-only write that skips the multi-source checks (price > 0 still applies)."""
        pass

    @abstractmethod
    def invalidate(self, caller: str) -> PublishedPrice:
        """Governor-only: mark the value invalid, keeping price and timestamp."""
        pass

    @abstractmethod
    def register_publisher(self, caller: str, identity: str, stake_hint: int = 0) -> Publisher:
        """Governor-only: authorize an identity to publish.

        :raises PublisherStateError: If the identity is already active.
        """
        pass

    @abstractmethod
    def deactivate_publisher(self, caller: str, identity: str, reason: str) -> Publisher:
        """Governor-only: revoke an identity's publishing rights, keeping its record.

        :raises PublisherStateError: If the identity is not currently active.
        """
        pass
