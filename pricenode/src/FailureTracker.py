"""FailureTracker: Per-asset consecutive-failure counting for alerting.

Every failed or rejected round increments the asset's counter; an accepted
publication resets it to zero. record_failure() reports when the counter
reaches a multiple of the alert threshold, so a persistently failing asset
alerts at 5, 10, 15, ... failures rather than on every round.

.. code-block:: python

    >>> tracker = FailureTracker(alert_threshold=2)
    >>> tracker.record_failure("BTC")
    False
    >>> tracker.record_failure("BTC")
    True
    >>> tracker.record_success("BTC")
    >>> tracker.get_status("BTC").consecutive_failures
    0
"""

from __future__ import annotations

import time
from dataclasses import dataclass

DEFAULT_ALERT_THRESHOLD = 5


@dataclass
class FailureStatus:
    """Failure bookkeeping for one asset.

    :ivar consecutive_failures: Failures since the last accepted publication.
    :ivar total_failures: Failures since tracking began.
    :ivar total_successes: Accepted publications since tracking began.
    :ivar last_failure_at: Unix timestamp of the last failure (0 if none).
    :ivar last_error: Cause of the last failure.
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_failure_at: float = 0.0
    last_error: str = ""


class FailureTracker:
    """Tracks consecutive failures per asset.

    :ivar alert_threshold: Consecutive failures that trigger an alert.
    """

    def __init__(self, alert_threshold: int = DEFAULT_ALERT_THRESHOLD) -> None:
        """Initialize the tracker.

        :param alert_threshold: Consecutive failures per alert (default: 5).
        :raises ValueError: If alert_threshold < 1.
        """
        if alert_threshold < 1:
            raise ValueError("alert_threshold must be at least 1")
        self.alert_threshold = alert_threshold
        self._status: dict[str, FailureStatus] = {}

    def record_failure(self, asset: str, error: str = "") -> bool:
        """Record a failed round.

        :param asset: Asset symbol.
        :param error: Cause of the failure.
        :returns: True if the counter just reached a multiple of the threshold.
        """
        status = self._status.setdefault(asset, FailureStatus())
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_failure_at = time.time()
        status.last_error = error
        return status.consecutive_failures % self.alert_threshold == 0

    def record_success(self, asset: str) -> None:
        """Record an accepted publication, resetting the consecutive count."""
        status = self._status.setdefault(asset, FailureStatus())
        status.consecutive_failures = 0
        status.total_successes += 1

    def get_failure_count(self, asset: str) -> int:
        status = self._status.get(asset)
        return status.consecutive_failures if status else 0

    def get_status(self, asset: str) -> FailureStatus | None:
        return self._status.get(asset)

    def get_all_counts(self) -> dict[str, int]:
        """Consecutive failure count of every tracked asset."""
        return {asset: s.consecutive_failures for asset, s in self._status.items()}
