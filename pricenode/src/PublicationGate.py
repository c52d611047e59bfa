"""PublicationGate: Authorized, validated writes to the per-asset registries.

Before a multi-source write reaches the registry the gate checks, in order:

    1. the caller is an active publisher        -> NOT_AUTHORIZED
    2. at least min_sources source prices       -> INSUFFICIENT_SOURCES
    3. as many source names as source prices    -> MISMATCHED_INPUT
    4. every price is positive at 18 decimals and fits a uint256, and
       deviation_bp(price, source prices) <= max_deviation_bp
                                                -> VALIDATION_FAILED

The deviation is measured against the caller's own source prices, the same
rule the registry applies. Registry errors raised by the write itself are
converted, so every operation returns a PublishResult instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from .PriceAggregator import MAX_DEVIATION_BP, MIN_SOURCES, SourceReading, deviation_bp
from .Registry import (
    InsufficientSourcesError,
    MismatchedInputError,
    NotAuthorizedError,
    PriceRegistry,
    PriceValidationError,
    PublishedPrice,
    Publisher,
    PublisherStateError,
    RegistryError,
    RegistryUnavailableError,
    publishable_fixed_point,
)
from .TrackedAsset import TrackedAsset

logger = logging.getLogger(__name__)


class PublishError(str, Enum):
    NOT_AUTHORIZED = "not_authorized"
    INSUFFICIENT_SOURCES = "insufficient_sources"
    MISMATCHED_INPUT = "mismatched_input"
    VALIDATION_FAILED = "validation_failed"
    REGISTRY_UNAVAILABLE = "registry_unavailable"
    ALREADY_ACTIVE = "already_active"
    NOT_ACTIVE = "not_active"


_ERROR_CODES: list[tuple[type[RegistryError], PublishError]] = [
    (NotAuthorizedError, PublishError.NOT_AUTHORIZED),
    (InsufficientSourcesError, PublishError.INSUFFICIENT_SOURCES),
    (MismatchedInputError, PublishError.MISMATCHED_INPUT),
    (PriceValidationError, PublishError.VALIDATION_FAILED),
    (RegistryUnavailableError, PublishError.REGISTRY_UNAVAILABLE),
]


@dataclass(frozen=True)
class PublishResult:
    """Outcome of a gated operation.

    :ivar error: None on success.
    :ivar detail: Explanation of a failure.
    :ivar state: Registry state after a successful price operation.
    :ivar publisher: Publisher record after a successful lifecycle operation.
    """

    error: PublishError | None = None
    detail: str = ""
    state: PublishedPrice | None = None
    publisher: Publisher | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, error: PublishError, detail: str) -> PublishResult:
        return cls(error=error, detail=detail)


class PublicationGate:
    """Single write path to the registries of all tracked assets.

    :ivar registries: Registry per asset.
    :ivar min_sources: Minimum source prices per publish.
    :ivar max_deviation_bp: Max deviation of the price from its sources.
    """

    def __init__(
        self,
        registries: Mapping[TrackedAsset, PriceRegistry],
        min_sources: int = MIN_SOURCES,
        max_deviation_bp: int = MAX_DEVIATION_BP,
    ) -> None:
        self.registries = dict(registries)
        self.min_sources = min_sources
        self.max_deviation_bp = max_deviation_bp

    @property
    def assets(self) -> list[TrackedAsset]:
        return list(self.registries)

    def registry(self, asset: TrackedAsset) -> PriceRegistry:
        """Registry of an asset.

        :raises KeyError: If the asset has no registry.
        """
        try:
            return self.registries[asset]
        except KeyError:
            raise KeyError(f"No registry configured for {asset}") from None

    def publish(
        self,
        asset: TrackedAsset,
        caller: str,
        price: float,
        readings: Sequence[SourceReading],
    ) -> PublishResult:
        """Publish a price together with the readings it was derived from.

        :param asset: Asset to publish.
        :param caller: Publishing identity.
        :param price: Candidate price.
        :param readings: Source readings backing the price.
        """
        return self.publish_raw(
            asset,
            caller,
            price,
            [r.price for r in readings],
            [r.source_name for r in readings],
        )

    def publish_raw(
        self,
        asset: TrackedAsset,
        caller: str,
        price: float,
        source_prices: Sequence[float],
        source_names: Sequence[str],
    ) -> PublishResult:
        """Publish a price with separately supplied source prices and names."""
        registry = self.registry(asset)

        try:
            authorized = registry.is_active_publisher(caller)
        except RegistryError as e:
            return self._failed(asset, "publish", e)
        if not authorized:
            return PublishResult.failed(
                PublishError.NOT_AUTHORIZED, f"{caller} is not an active publisher for {asset}"
            )

        rejection = self._validate(price, source_prices, source_names)
        if rejection is not None:
            return rejection

        return self._run(
            asset,
            "publish",
            lambda: PublishResult(state=registry.write(caller, price, source_prices, source_names)),
        )

    def emergency_publish(self, asset: TrackedAsset, caller: str, price: float) -> PublishResult:
        """Governor-only write that skips the multi-source checks (price > 0 still applies)."""
        registry = self.registry(asset)
        try:
            authorized = registry.is_governor(caller)
        except RegistryError as e:
            return self._failed(asset, "emergency publish", e)
        if not authorized:
            return PublishResult.failed(
                PublishError.NOT_AUTHORIZED, f"{caller} is not a governor of {asset}"
            )
        try:
            publishable_fixed_point(price)
        except PriceValidationError as e:
            return PublishResult.failed(PublishError.VALIDATION_FAILED, str(e))
        result = self._run(
            asset,
            "emergency publish",
            lambda: PublishResult(state=registry.emergency_write(caller, price)),
        )
        if result.ok:
            logger.warning(f"[{asset}] Emergency price {price} published by {caller}")
        return result

    def invalidate(self, asset: TrackedAsset, caller: str) -> PublishResult:
        """Governor-only: mark the published value invalid, keeping price and timestamp."""
        registry = self.registry(asset)
        result = self._run(
            asset, "invalidate", lambda: PublishResult(state=registry.invalidate(caller))
        )
        if result.ok:
            logger.warning(f"[{asset}] Price invalidated by {caller}")
        return result

    def register_publisher(
        self, asset: TrackedAsset, caller: str, identity: str, stake_hint: int = 0
    ) -> PublishResult:
        registry = self.registry(asset)
        result = self._run(
            asset,
            "register publisher",
            lambda: PublishResult(
                publisher=registry.register_publisher(caller, identity, stake_hint)
            ),
            state_error=PublishError.ALREADY_ACTIVE,
        )
        if result.ok:
            logger.info(f"[{asset}] Registered publisher {identity}")
        return result

    def deactivate_publisher(
        self, asset: TrackedAsset, caller: str, identity: str, reason: str
    ) -> PublishResult:
        registry = self.registry(asset)
        result = self._run(
            asset,
            "deactivate publisher",
            lambda: PublishResult(
                publisher=registry.deactivate_publisher(caller, identity, reason)
            ),
            state_error=PublishError.NOT_ACTIVE,
        )
        if result.ok:
            logger.info(f"[{asset}] Deactivated publisher {identity}: {reason}")
        return result

    def ping(self) -> None:
        """Check that every registry is reachable.

        :raises RegistryUnavailableError: On the first unreachable registry.
        """
        for registry in self.registries.values():
            registry.ping()

    def read_state(self, asset: TrackedAsset) -> PublishedPrice:
        """Current registry state of an asset.

        :raises RegistryError: If the registry cannot be read.
        """
        return self.registry(asset).read_state()

    def is_fresh(self, asset: TrackedAsset) -> bool:
        return self.registry(asset).is_fresh()

    def get_active_publisher_count(self, asset: TrackedAsset) -> int:
        return self.registry(asset).get_active_publisher_count()

    def _validate(
        self,
        price: float,
        source_prices: Sequence[float],
        source_names: Sequence[str],
    ) -> PublishResult | None:
        if len(source_prices) < self.min_sources:
            return PublishResult.failed(
                PublishError.INSUFFICIENT_SOURCES,
                f"{len(source_prices)} source prices, {self.min_sources} required",
            )
        if len(source_prices) != len(source_names):
            return PublishResult.failed(
                PublishError.MISMATCHED_INPUT,
                f"{len(source_prices)} source prices but {len(source_names)} source names",
            )
        try:
            for value in (price, *source_prices):
                publishable_fixed_point(value)
            deviation = deviation_bp(price, source_prices)
        except (PriceValidationError, ValueError) as e:
            return PublishResult.failed(PublishError.VALIDATION_FAILED, str(e))
        if deviation > self.max_deviation_bp:
            return PublishResult.failed(
                PublishError.VALIDATION_FAILED,
                f"deviation {deviation}bp exceeds {self.max_deviation_bp}bp",
            )
        return None

    def _run(
        self,
        asset: TrackedAsset,
        operation: str,
        fn: Callable[[], PublishResult],
        state_error: PublishError | None = None,
    ) -> PublishResult:
        try:
            return fn()
        except PublisherStateError as e:
            if state_error is None:
                return self._failed(asset, operation, e)
            return PublishResult.failed(state_error, str(e))
        except RegistryError as e:
            return self._failed(asset, operation, e)

    @staticmethod
    def _failed(asset: TrackedAsset, operation: str, exc: RegistryError) -> PublishResult:
        for error_cls, code in _ERROR_CODES:
            if isinstance(exc, error_cls):
                return PublishResult.failed(code, str(exc))
        logger.error(f"[{asset}] Unexpected registry error during {operation}: {exc}")
        return PublishResult.failed(PublishError.REGISTRY_UNAVAILABLE, str(exc))
