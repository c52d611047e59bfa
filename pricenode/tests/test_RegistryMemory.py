"""Unit tests for MemoryRegistry and the registry helpers."""

from unittest.mock import patch

import pytest
from conftest import GOVERNOR, NODE

from pricenode.src.Registry import (
    InsufficientSourcesError,
    MismatchedInputError,
    NotAuthorizedError,
    PriceValidationError,
    PublisherStateError,
    StaleReadError,
    from_fixed_point,
    publishable_fixed_point,
    to_fixed_point,
)
from pricenode.src.RegistryMemory import MemoryRegistry

SOURCES = [49900.0, 50000.0, 50100.0]
NAMES = ["binance", "coinbase", "kraken"]


def at(timestamp: float):
    return patch("pricenode.src.RegistryMemory.time.time", return_value=timestamp)


class TestFixedPoint:
    def test_to_fixed_point(self) -> None:
        """Prices scale by 10**18 using their decimal form."""
        assert to_fixed_point(1) == 10**18
        assert to_fixed_point(50000.0) == 50000 * 10**18
        assert to_fixed_point(49900.1) == 49900100000000000000000

    def test_from_fixed_point(self) -> None:
        """Fixed-point values convert back to float prices."""
        assert from_fixed_point(50000 * 10**18) == 50000.0
        assert from_fixed_point(0) == 0.0

    def test_negative_raises(self) -> None:
        with pytest.raises(ValueError):
            to_fixed_point(-1.0)

    def test_non_finite_raises(self) -> None:
        """Infinite and NaN prices have no fixed-point form."""
        for price in (float("inf"), float("nan")):
            with pytest.raises(ValueError, match="finite"):
                to_fixed_point(price)

    def test_beyond_uint256_raises(self) -> None:
        with pytest.raises(ValueError):
            to_fixed_point(1e60)

    def test_publishable_fixed_point(self) -> None:
        """Only prices positive at 18 decimals and within a uint256 are publishable."""
        assert publishable_fixed_point(1e-18) == 1
        assert publishable_fixed_point(50000.0) == 50000 * 10**18
        for price in (0.0, -1.0, 1e-20, 1e60, float("inf"), float("nan")):
            with pytest.raises(PriceValidationError):
                publishable_fixed_point(price)


class TestInitialState:
    def test_never_written(self, btc) -> None:
        """A fresh registry holds no price and is neither valid nor fresh."""
        registry = MemoryRegistry(btc, governor=GOVERNOR)
        state = registry.read_state()

        assert state.price == 0.0
        assert state.timestamp == 0
        assert not state.valid
        assert not registry.is_fresh()
        assert registry.get_active_publisher_count() == 0

    def test_read_price_never_written(self, btc) -> None:
        """Consumers reading an unwritten registry get StaleReadError."""
        with pytest.raises(StaleReadError):
            MemoryRegistry(btc, governor=GOVERNOR).read_price()

    def test_governor_seeded(self, btc) -> None:
        """The creating identity is the first governor."""
        registry = MemoryRegistry(btc, governor=GOVERNOR)
        assert registry.is_governor(GOVERNOR)
        assert not registry.is_governor(NODE)


class TestWrite:
    def test_accepted(self, registry) -> None:
        """An accepted write stores price and timestamp and stamps the publisher."""
        with at(1000.0):
            state = registry.write(NODE, 50000.0, SOURCES, NAMES)

        assert state.price == 50000.0
        assert state.timestamp == 1000
        assert state.valid
        assert registry.get_publisher(NODE).last_published_at == 1000

    def test_unregistered_caller(self, registry) -> None:
        """Unknown identities cannot write."""
        with pytest.raises(NotAuthorizedError):
            registry.write("stranger", 50000.0, SOURCES, NAMES)

    def test_authorization_checked_first(self, registry) -> None:
        """An unauthorized caller is rejected even with invalid inputs."""
        with pytest.raises(NotAuthorizedError):
            registry.write("stranger", -1.0, [1.0], [])

    def test_insufficient_sources(self, registry) -> None:
        """Fewer than three source prices are rejected."""
        with pytest.raises(InsufficientSourcesError):
            registry.write(NODE, 50000.0, SOURCES[:2], NAMES[:2])

    def test_mismatched_input(self, registry) -> None:
        """Source prices and names must have equal length."""
        with pytest.raises(MismatchedInputError):
            registry.write(NODE, 50000.0, SOURCES, NAMES[:2])

    def test_non_positive_price(self, registry) -> None:
        """Zero is not a publishable price."""
        with pytest.raises(PriceValidationError):
            registry.write(NODE, 0.0, SOURCES, NAMES)

    def test_non_finite_price(self, registry) -> None:
        """An infinite candidate is a validation failure, not an overflow."""
        with pytest.raises(PriceValidationError):
            registry.write(NODE, float("inf"), SOURCES, NAMES)

    def test_deviation_too_large(self, registry) -> None:
        """A candidate over 10% away from its own source median is rejected."""
        with pytest.raises(PriceValidationError, match="deviation"):
            registry.write(NODE, 56000.0, [45000.0, 50000.0, 56000.0], NAMES)

    def test_rejected_write_keeps_state(self, registry) -> None:
        """A rejected write leaves the previous value untouched."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
            with pytest.raises(PriceValidationError):
                registry.write(NODE, 60000.0, SOURCES, NAMES)
            state = registry.read_state()

        assert state.price == 50000.0
        assert state.timestamp == 1000

    def test_deactivated_publisher_rejected(self, registry) -> None:
        """Deactivated publishers lose write access."""
        registry.deactivate_publisher(GOVERNOR, NODE, "maintenance")
        with pytest.raises(NotAuthorizedError):
            registry.write(NODE, 50000.0, SOURCES, NAMES)


class TestFreshness:
    def test_fresh_within_threshold(self, registry) -> None:
        """Exactly STALENESS_THRESHOLD seconds old is still fresh."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
        with at(1000.0 + 3600):
            assert registry.is_fresh()
            assert registry.read_state().valid
            assert registry.read_price() == 50000.0

    def test_stale_after_threshold(self, registry) -> None:
        """One second past the threshold the value is stale and invalid."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
        with at(1000.0 + 3601):
            assert not registry.is_fresh()
            assert not registry.read_state().valid
            with pytest.raises(StaleReadError):
                registry.read_price()

    def test_custom_threshold(self, btc) -> None:
        """The staleness threshold is configurable per registry."""
        registry = MemoryRegistry(btc, governor=GOVERNOR, staleness_threshold=60)
        registry.register_publisher(GOVERNOR, NODE)
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
        with at(1061.0):
            assert not registry.is_fresh()


class TestGovernorOperations:
    def test_emergency_write(self, registry) -> None:
        """Emergency writes skip the source checks."""
        with at(2000.0):
            state = registry.emergency_write(GOVERNOR, 123.45)

        assert state.price == 123.45
        assert state.timestamp == 2000
        assert state.valid

    def test_emergency_write_requires_governor(self, registry) -> None:
        """Publishers cannot use the emergency path."""
        with pytest.raises(NotAuthorizedError):
            registry.emergency_write(NODE, 123.45)

    def test_emergency_write_non_positive(self, registry) -> None:
        """Emergency writes still require a positive price."""
        with pytest.raises(PriceValidationError):
            registry.emergency_write(GOVERNOR, 0.0)

    def test_emergency_write_unencodable(self, registry) -> None:
        """Prices that are zero at 18 decimals or overflow a uint256 are rejected."""
        for price in (1e-20, 1e60, float("inf")):
            with pytest.raises(PriceValidationError):
                registry.emergency_write(GOVERNOR, price)

        assert registry.read_state().timestamp == 0

    def test_invalidate_keeps_price(self, registry) -> None:
        """Invalidation clears validity but keeps price and timestamp."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
            state = registry.invalidate(GOVERNOR)

            assert state.price == 50000.0
            assert state.timestamp == 1000
            assert not state.valid
            with pytest.raises(StaleReadError):
                registry.read_price()

    def test_write_after_invalidate_restores(self, registry) -> None:
        """The next accepted write makes the value valid again."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
            registry.invalidate(GOVERNOR)
            registry.write(NODE, 50100.0, SOURCES, NAMES)
            assert registry.read_price() == 50100.0

    def test_invalidate_requires_governor(self, registry) -> None:
        """Only governors invalidate."""
        with pytest.raises(NotAuthorizedError):
            registry.invalidate(NODE)


class TestPublisherLifecycle:
    def test_register(self, registry) -> None:
        """Registration records time and stake hint."""
        with at(500.0):
            publisher = registry.register_publisher(GOVERNOR, "node-2", stake_hint=7)

        assert publisher.active
        assert publisher.registered_at == 500
        assert publisher.stake == 7
        assert registry.get_active_publisher_count() == 2

    def test_register_requires_governor(self, registry) -> None:
        """Publishers cannot register other publishers."""
        with pytest.raises(NotAuthorizedError):
            registry.register_publisher(NODE, "node-2")

    def test_register_active_rejected(self, registry) -> None:
        """Re-registering an active publisher fails and changes nothing."""
        before = registry.get_publisher(NODE)
        with pytest.raises(PublisherStateError):
            registry.register_publisher(GOVERNOR, NODE, stake_hint=99)
        assert registry.get_publisher(NODE) == before

    def test_deactivate_keeps_record(self, registry) -> None:
        """Deactivated publishers stay on record."""
        publisher = registry.deactivate_publisher(GOVERNOR, NODE, "maintenance")

        assert not publisher.active
        assert registry.get_publisher(NODE) is not None
        assert registry.get_active_publisher_count() == 0

    def test_deactivate_inactive_rejected(self, registry) -> None:
        """Only active publishers can be deactivated."""
        registry.deactivate_publisher(GOVERNOR, NODE, "maintenance")
        with pytest.raises(PublisherStateError):
            registry.deactivate_publisher(GOVERNOR, NODE, "again")
        with pytest.raises(PublisherStateError):
            registry.deactivate_publisher(GOVERNOR, "unknown", "never registered")

    def test_reactivation(self, registry) -> None:
        """Re-registering an inactive publisher restores it and resets registered_at."""
        with at(1000.0):
            registry.write(NODE, 50000.0, SOURCES, NAMES)
        registry.deactivate_publisher(GOVERNOR, NODE, "maintenance")

        with at(5000.0):
            publisher = registry.register_publisher(GOVERNOR, NODE)

        assert publisher.active
        assert publisher.registered_at == 5000
        assert publisher.last_published_at == 1000

    def test_returned_records_are_copies(self, registry) -> None:
        """Mutating a returned record does not change the registry."""
        registry.get_publisher(NODE).active = False
        assert registry.is_active_publisher(NODE)

    def test_unknown_publisher(self, registry) -> None:
        """Unknown identities have no record and are not active."""
        assert registry.get_publisher("unknown") is None
        assert not registry.is_active_publisher("unknown")
