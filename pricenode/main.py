#!/usr/bin/env python3
"""Price Node.

Fetches cryptocurrency prices from multiple independent sources, computes
the median price per asset and publishes validated prices to the per-asset
oracle registries.

Configured with CLI flags; every flag falls back to an environment variable.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from .src.FailureTracker import FailureTracker
from .src.PriceAggregator import PriceAggregator
from .src.PriceOracle import DEFAULT_HEALTH_INTERVAL, DEFAULT_UPDATE_INTERVAL, PriceOracle
from .src.PublicationGate import PublicationGate
from .src.Registry import STALENESS_THRESHOLD, PriceRegistry
from .src.RegistryContract import ContractRegistry, connect
from .src.RegistryMemory import MemoryRegistry
from .src.SourcePool import SourcePool
from .src.TrackedAsset import TrackedAsset
from .src.alerts import AlertSink, WebhookAlertSink
from .src.fetchers import get_available_fetchers, get_fetcher

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_ASSETS = "BTC,ETH,USDT,USDC,DAI"

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False, log_dir: str | None = None, node_id: str = "") -> None:
    """Configure root logging: console, plus <log_dir>/<node_id>.log if given."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / f"{node_id}.log"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
        force=True,
    )


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: coingecko=abc123,cryptocompare=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    return {
        source.lower(): key for source, key in _parse_assignments(api_key_str).items()
    }


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_COINGECKO, API_KEY_CRYPTOCOMPARE, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    for key, value in os.environ.items():
        if key.startswith("API_KEY_") and value:
            api_keys[key[len("API_KEY_"):].lower()] = value
    return api_keys


def parse_registry_addresses(
    address_str: str | None, assets: list[TrackedAsset]
) -> dict[TrackedAsset, str]:
    """Collect the registry contract address of every asset.

    Addresses come from ``<ASSET>_ORACLE_ADDRESS`` environment variables,
    overridden by ``--registry-addresses BTC=0x...,ETH=0x...``.

    :param address_str: Comma-separated ASSET=address assignments.
    :param assets: Tracked assets.
    :returns: Address per asset; assets without one are left out.
    """
    addresses: dict[TrackedAsset, str] = {}
    for asset in assets:
        env_address = os.environ.get(f"{asset}_ORACLE_ADDRESS")
        if env_address:
            addresses[asset] = env_address
    for symbol, address in _parse_assignments(address_str).items():
        asset = TrackedAsset(symbol)
        if asset in assets:
            addresses[asset] = address
    return addresses


def _parse_assignments(value: str | None) -> dict[str, str]:
    if not value:
        return {}
    result = {}
    for item in value.split(","):
        item = item.strip()
        if "=" in item:
            name, assigned = item.split("=", 1)
            result[name.strip()] = assigned.strip()
    return result


def build_parser(available_sources: list[str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Price Node: Multi-source price aggregation and publishing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # Dry run against an in-process registry
  python -m pricenode.main --memory-registry --assets BTC,ETH

  # Publish to deployed oracle contracts
  python -m pricenode.main --rpc-url https://rpc.example.org \\
      --private-key $PRIVATE_KEY \\
      --registry-addresses BTC=0x...,ETH=0x...

Environment variables (CLI args take precedence):
  ORACLE_NODE_ID, ASSETS, SOURCES, RPC_URL, PRIVATE_KEY, <ASSET>_ORACLE_ADDRESS,
  ORACLE_UPDATE_INTERVAL, HEALTH_CHECK_INTERVAL, ORACLE_MAX_DEVIATION,
  STALENESS_THRESHOLD, FETCH_TIMEOUT, FETCH_RETRIES, ALERT_WEBHOOK_URL,
  LOG_DIR, LOG_LEVEL, API_KEY_COINGECKO, API_KEY_CRYPTOCOMPARE, etc.
""",
    )

    parser.add_argument(
        "--node-id",
        dest="node_id",
        type=str,
        help="Node name used in logs and as the log file name (default: pricenode-1)",
        default=os.environ.get("ORACLE_NODE_ID") or "pricenode-1",
    )

    parser.add_argument(
        "--assets",
        type=str,
        help=f"Comma-separated assets to track (default: {DEFAULT_ASSETS})",
        default=os.environ.get("ASSETS") or DEFAULT_ASSETS,
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or ",".join(available_sources),
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="JSON-RPC endpoint of the chain hosting the oracle contracts",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--private-key",
        dest="private_key",
        type=str,
        help="Private key the node signs transactions with",
        default=os.environ.get("PRIVATE_KEY"),
    )

    parser.add_argument(
        "--registry-addresses",
        dest="registry_addresses",
        type=str,
        help="Comma-separated oracle contract addresses (e.g., BTC=0x...,ETH=0x...)",
        default=None,
    )

    parser.add_argument(
        "--memory-registry",
        dest="memory_registry",
        action="store_true",
        help="Publish to an in-process registry instead of contracts (dry run)",
    )

    parser.add_argument(
        "--update-interval",
        dest="update_interval",
        type=int,
        help=f"Seconds between update cycles (minimum: 1, default: {DEFAULT_UPDATE_INTERVAL})",
        default=int(os.environ.get("ORACLE_UPDATE_INTERVAL") or DEFAULT_UPDATE_INTERVAL),
    )

    parser.add_argument(
        "--health-interval",
        dest="health_interval",
        type=int,
        help=f"Seconds between health checks (minimum: 1, default: {DEFAULT_HEALTH_INTERVAL})",
        default=int(os.environ.get("HEALTH_CHECK_INTERVAL") or DEFAULT_HEALTH_INTERVAL),
    )

    parser.add_argument(
        "--max-deviation-bp",
        dest="max_deviation_bp",
        type=int,
        help="Max deviation from the source median in basis points (default: 1000)",
        default=int(os.environ.get("ORACLE_MAX_DEVIATION") or "1000"),
    )

    parser.add_argument(
        "--staleness-threshold",
        dest="staleness_threshold",
        type=int,
        help=f"Seconds after which a published price is stale (default: {STALENESS_THRESHOLD})",
        default=int(os.environ.get("STALENESS_THRESHOLD") or STALENESS_THRESHOLD),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--fetch-retries",
        dest="fetch_retries",
        type=int,
        help="Attempts per source and round (default: 3)",
        default=int(os.environ.get("FETCH_RETRIES") or "3"),
    )

    parser.add_argument(
        "--alert-webhook",
        dest="alert_webhook",
        type=str,
        help="Discord/Slack-compatible webhook for alerts (default: log only)",
        default=os.environ.get("ALERT_WEBHOOK_URL"),
    )

    parser.add_argument(
        "--log-dir",
        dest="log_dir",
        type=str,
        help="Directory for the <node-id>.log file (default: console only)",
        default=os.environ.get("LOG_DIR"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=abc,cryptocompare=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
        default=(os.environ.get("LOG_LEVEL") or "").upper() == "DEBUG",
    )

    return parser


def build_registries(
    args: argparse.Namespace,
    parser: argparse.ArgumentParser,
    assets: list[TrackedAsset],
) -> tuple[dict[TrackedAsset, PriceRegistry], str]:
    """Create the registry of every asset.

    :returns: Tuple of (registries, publishing identity).
    """
    if args.memory_registry:
        identity = args.node_id
        registries: dict[TrackedAsset, PriceRegistry] = {}
        for asset in assets:
            registry = MemoryRegistry(
                asset,
                governor=identity,
                staleness_threshold=args.staleness_threshold,
                max_deviation_bp=args.max_deviation_bp,
            )
            registry.register_publisher(identity, identity)
            registries[asset] = registry
        return registries, identity

    if not args.rpc_url:
        parser.error("--rpc-url is required unless --memory-registry is given")
    if not args.private_key:
        parser.error("--private-key is required unless --memory-registry is given")

    addresses = parse_registry_addresses(args.registry_addresses, assets)
    for asset in assets:
        if asset not in addresses:
            logger.warning(f"No oracle address configured for {asset}, skipping it")

    w3, account = connect(args.rpc_url, args.private_key)
    registries = {
        asset: ContractRegistry(
            asset,
            w3,
            address,
            account,
            staleness_threshold=args.staleness_threshold,
        )
        for asset, address in addresses.items()
    }
    return registries, account.address


def main() -> None:
    """Main entry point for the Price Node CLI."""
    available_sources = get_available_fetchers()
    parser = build_parser(available_sources)
    args = parser.parse_args()

    configure_logging(args.verbose, args.log_dir, args.node_id)

    # Validate arguments
    if args.update_interval < 1:
        parser.error("--update-interval must be at least 1 second")

    if args.health_interval < 1:
        parser.error("--health-interval must be at least 1 second")

    if args.max_deviation_bp < 1:
        parser.error("--max-deviation-bp must be positive")

    if args.staleness_threshold < 1:
        parser.error("--staleness-threshold must be positive")

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.fetch_retries < 1:
        parser.error("--fetch-retries must be at least 1")

    try:
        assets = TrackedAsset.parse_list(args.assets)
    except ValueError as e:
        parser.error(str(e))
    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]

    if not assets:
        parser.error("At least one asset must be specified")

    if not sources:
        parser.error("At least one source must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    registries, identity = build_registries(args, parser, assets)
    if not registries:
        parser.error("No asset has an oracle address configured")
    assets = [a for a in assets if a in registries]

    # Log configuration
    logger.info("=" * 60)
    logger.info("Price Node - Multi-Source Aggregation")
    logger.info("=" * 60)
    logger.info(f"Node ID:           {args.node_id}")
    logger.info(f"Identity:          {identity}")
    logger.info(f"Registry:          {'memory (dry run)' if args.memory_registry else args.rpc_url}")
    logger.info(f"Assets:            {', '.join(str(a) for a in assets)}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Max Deviation:     {args.max_deviation_bp}bp")
    logger.info(f"Staleness:         {args.staleness_threshold}s")
    logger.info(f"Update Interval:   {args.update_interval}s")
    logger.info(f"Health Interval:   {args.health_interval}s")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s x {args.fetch_retries} attempts")
    logger.info(f"Alerts:            {'webhook' if args.alert_webhook else 'log only'}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    fetchers = {
        source: get_fetcher(source, api_key=api_keys.get(source), timeout=args.fetch_timeout)
        for source in sources
    }

    try:
        price_oracle = PriceOracle(
            node_id=args.node_id,
            identity=identity,
            assets=assets,
            source_pool=SourcePool(
                fetchers,
                fetch_timeout=args.fetch_timeout,
                max_attempts=args.fetch_retries,
            ),
            gate=PublicationGate(registries, max_deviation_bp=args.max_deviation_bp),
            aggregator=PriceAggregator(max_deviation_bp=args.max_deviation_bp),
            failure_tracker=FailureTracker(),
            alert_sink=WebhookAlertSink(args.alert_webhook) if args.alert_webhook else AlertSink(),
            update_interval=args.update_interval,
            health_interval=args.health_interval,
        )
        asyncio.run(run_until_signalled(price_oracle))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


async def run_until_signalled(price_oracle: PriceOracle) -> None:
    """Run the node until SIGINT or SIGTERM asks it to stop."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, price_oracle.stop)
    await price_oracle.run()


if __name__ == "__main__":
    main()
