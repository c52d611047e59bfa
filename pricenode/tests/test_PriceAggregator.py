"""Unit tests for PriceAggregator."""

import logging
from unittest.mock import patch

import pytest

from pricenode.src.PriceAggregator import (
    PriceAggregator,
    PriceSnapshot,
    RejectionReason,
    SourceReading,
    deviation_bp,
    median,
)
from pricenode.src.TrackedAsset import TrackedAsset

BTC = TrackedAsset("BTC")


def readings(*prices: float) -> list[SourceReading]:
    return [SourceReading(f"source{i}", p) for i, p in enumerate(prices)]


class TestMedian:
    """Test the median helper."""

    def test_odd_count(self) -> None:
        """Odd count takes the middle element."""
        assert median([49900, 50000, 50100]) == 50000

    def test_even_count(self) -> None:
        """Even count averages the two middle elements."""
        assert median([1, 2]) == 1.5

    def test_single_value(self) -> None:
        assert median([5]) == 5

    def test_unsorted_input(self) -> None:
        """Input order does not matter."""
        assert median([50100, 49900, 50000]) == 50000
        assert median([4.0, 1.0, 3.0, 2.0]) == 2.5

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            median([])


class TestDeviationBp:
    """Test the basis-point deviation helper."""

    def test_zero_deviation(self) -> None:
        assert deviation_bp(50000, [49900, 50000, 50100]) == 0

    def test_ten_percent(self) -> None:
        """10% above the median is 1000bp."""
        assert deviation_bp(55000, [50000, 50000, 50000]) == 1000

    def test_below_median(self) -> None:
        """Deviation is absolute."""
        assert deviation_bp(45000, [50000, 50000, 50000]) == 1000

    def test_truncates(self) -> None:
        """Fractional basis points are truncated."""
        assert deviation_bp(50004, [50000, 50000, 50000]) == 0
        assert deviation_bp(50099, [50000, 50000, 50000]) == 19

    def test_non_positive_median_raises(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            deviation_bp(1.0, [0.0, 0.0, 0.0])

    def test_non_finite_raises(self) -> None:
        """Infinite inputs raise ValueError instead of overflowing."""
        with pytest.raises(ValueError, match="not finite"):
            deviation_bp(float("inf"), [1.0, 1.0, 1.0])
        with pytest.raises(ValueError, match="not finite"):
            deviation_bp(1.0, [float("inf")] * 3)


class TestPriceAggregatorInit:
    """Test PriceAggregator initialization."""

    def test_default_values(self) -> None:
        """Defaults match the publishing policy."""
        agg = PriceAggregator()
        assert agg.min_sources == 3
        assert agg.max_deviation_bp == 1000
        assert agg.large_move_percent == 10.0
        assert agg.large_move_window == 300

    def test_invalid_min_sources(self) -> None:
        with pytest.raises(ValueError, match="min_sources must be at least 1"):
            PriceAggregator(min_sources=0)

    def test_invalid_max_deviation(self) -> None:
        with pytest.raises(ValueError, match="max_deviation_bp must be positive"):
            PriceAggregator(max_deviation_bp=0)

    def test_invalid_large_move(self) -> None:
        with pytest.raises(ValueError, match="large_move_percent must be positive"):
            PriceAggregator(large_move_percent=-1)


class TestPriceAggregatorAggregate:
    """Test acceptance and rejection of rounds."""

    def test_accepts_three_agreeing_sources(self) -> None:
        result = PriceAggregator().aggregate(BTC, readings(49900, 50000, 50100))

        assert result.accepted
        assert result.price == 50000
        assert result.rejection_reason is None
        assert result.source_count == 3
        assert result.asset == BTC

    def test_price_is_median_for_sets_within_ten_percent(self) -> None:
        """Any set of at least 3 readings within 10% of its median is accepted at the median."""
        agg = PriceAggregator()
        cases = [
            (100.0, 105.0, 95.0),
            (1.0, 1.001, 0.999, 1.0),
            (3000.0, 3100.0, 2900.0, 3050.0, 2950.0),
            (50000.0, 54999.0, 45001.0),
        ]
        for prices in cases:
            result = agg.aggregate(BTC, readings(*prices))
            assert result.accepted, prices
            assert result.price == median(prices)

    def test_single_reading_rejected(self) -> None:
        """One reading is below MIN_SOURCES regardless of its value."""
        result = PriceAggregator().aggregate(BTC, readings(5))

        assert not result.accepted
        assert result.price is None
        assert result.rejection_reason == RejectionReason.INSUFFICIENT_SOURCES
        assert "1 of 3" in result.detail

    def test_no_readings_rejected(self) -> None:
        result = PriceAggregator().aggregate(BTC, [])
        assert result.rejection_reason == RejectionReason.INSUFFICIENT_SOURCES

    def test_custom_min_sources(self) -> None:
        result = PriceAggregator(min_sources=2).aggregate(BTC, readings(1, 2))
        assert result.accepted
        assert result.price == 1.5

    def test_non_positive_median_rejected(self) -> None:
        result = PriceAggregator().aggregate(BTC, readings(0.0, 0.0, 1.0))

        assert not result.accepted
        assert result.rejection_reason == RejectionReason.VALIDATION_FAILED
        assert "non-positive" in result.detail

    def test_contributing_sources_keep_order(self) -> None:
        result = PriceAggregator().aggregate(BTC, readings(50100, 49900, 50000))

        assert result.source_names == ["source0", "source1", "source2"]
        assert result.source_prices == [50100, 49900, 50000]

    def test_computed_at_uses_clock(self) -> None:
        with patch("pricenode.src.PriceAggregator.time.time", return_value=1234.0):
            result = PriceAggregator().aggregate(BTC, readings(1, 1, 1))
        assert result.computed_at == 1234.0


class TestLargeMoveWarning:
    """Large moves against the previous price are logged, never rejected."""

    def test_warns_on_large_recent_move(self, caplog: pytest.LogCaptureFixture) -> None:
        previous = PriceSnapshot(price=40000.0, timestamp=900.0, sources=3)

        with patch("pricenode.src.PriceAggregator.time.time", return_value=1000.0):
            with caplog.at_level(logging.WARNING, logger="pricenode.src.PriceAggregator"):
                result = PriceAggregator().aggregate(
                    BTC, readings(49900, 50000, 50100), previous=previous
                )

        assert result.accepted
        assert "Large price movement for BTC" in caplog.text

    def test_no_warning_outside_window(self, caplog: pytest.LogCaptureFixture) -> None:
        previous = PriceSnapshot(price=40000.0, timestamp=600.0)

        with patch("pricenode.src.PriceAggregator.time.time", return_value=1000.0):
            with caplog.at_level(logging.WARNING, logger="pricenode.src.PriceAggregator"):
                PriceAggregator().aggregate(BTC, readings(49900, 50000, 50100), previous=previous)

        assert "Large price movement" not in caplog.text

    def test_no_warning_for_small_move(self, caplog: pytest.LogCaptureFixture) -> None:
        previous = PriceSnapshot(price=49000.0, timestamp=990.0)

        with patch("pricenode.src.PriceAggregator.time.time", return_value=1000.0):
            with caplog.at_level(logging.WARNING, logger="pricenode.src.PriceAggregator"):
                PriceAggregator().aggregate(BTC, readings(49900, 50000, 50100), previous=previous)

        assert "Large price movement" not in caplog.text
