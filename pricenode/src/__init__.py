"""
Price Node - Multi-Source Price Aggregation Module

This module provides validated price publishing from multiple off-chain sources:
- TrackedAsset: Asset symbol and its bytes32 registry key
- SourcePool: Concurrent fetching with timeouts, retries and exclusions
- PriceAggregator: Median consensus with basis-point deviation checks
- PublicationGate: Authorized, validated writes to per-asset registries
- MemoryRegistry / ContractRegistry: In-process and on-chain registries
- FailureTracker: Per-asset consecutive failure counting for alerts
- PriceOracle: Node orchestrator for update cycles and health checks
- fetchers: Modular price fetcher implementations
"""

from .FailureTracker import FailureStatus, FailureTracker
from .PriceAggregator import (
    ConsensusResult,
    PriceAggregator,
    PriceSnapshot,
    RejectionReason,
    SourceReading,
    deviation_bp,
    median,
)
from .PriceOracle import PriceOracle, RoundOutcome, RoundState
from .PublicationGate import PublicationGate, PublishError, PublishResult
from .Registry import PriceRegistry, PublishedPrice, Publisher
from .RegistryContract import ContractRegistry
from .RegistryMemory import MemoryRegistry
from .SourcePool import DEFAULT_EXCLUSIONS, SourcePool
from .TrackedAsset import TrackedAsset
from .alerts import AlertSink, LogAlertSink, WebhookAlertSink

__all__ = [
    "AlertSink",
    "ConsensusResult",
    "ContractRegistry",
    "DEFAULT_EXCLUSIONS",
    "FailureStatus",
    "FailureTracker",
    "LogAlertSink",
    "MemoryRegistry",
    "PriceAggregator",
    "PriceOracle",
    "PriceRegistry",
    "PriceSnapshot",
    "PublicationGate",
    "PublishError",
    "PublishResult",
    "PublishedPrice",
    "Publisher",
    "RejectionReason",
    "RoundOutcome",
    "RoundState",
    "SourcePool",
    "SourceReading",
    "TrackedAsset",
    "WebhookAlertSink",
    "deviation_bp",
    "median",
]
