#!/usr/bin/env python3
"""Price source probe.

Commands:
    test [asset ...]      Query every source once and print price, latency
                          and the median/range/spread across sources
                          (default: all default assets)
    validate [asset]      Run a full fetch and report each source's deviation
                          from the median against the publishing policy
"""

import argparse
import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .main import DEFAULT_ASSETS, LOG_FORMAT, parse_env_api_keys
from .src.PriceAggregator import MAX_DEVIATION_BP, MIN_SOURCES, deviation_bp, median
from .src.SourcePool import SourcePool
from .src.TrackedAsset import TrackedAsset
from .src.fetchers import BaseFetcher, get_available_fetchers, get_fetcher


@dataclass(frozen=True)
class ProbeResult:
    """One source's answer to a probe.

    :ivar source: Source name.
    :ivar price: Price, or None on failure.
    :ivar latency_ms: Time taken in milliseconds.
    :ivar error: Failure description.
    """

    source: str
    price: float | None
    latency_ms: float
    error: str = ""


async def probe_sources(pool: SourcePool, asset: TrackedAsset) -> list[ProbeResult]:
    """Query every eligible source once, concurrently."""

    async def probe(source: str) -> ProbeResult:
        start = time.perf_counter()
        try:
            price = await pool.probe(source, asset)
        except asyncio.TimeoutError:
            error = f"timeout after {pool.fetch_timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            return ProbeResult(source, price, (time.perf_counter() - start) * 1000)
        return ProbeResult(source, None, (time.perf_counter() - start) * 1000, error)

    return list(await asyncio.gather(*(probe(s) for s in pool.sources_for(asset))))


def report_probe(asset: TrackedAsset, results: list[ProbeResult], out: Callable[[str], None]) -> int:
    """Print a probe report.

    :returns: Number of sources that returned a price.
    """
    out(f"Testing price sources for {asset}:")
    for r in results:
        if r.price is None:
            out(f"  FAIL {r.source:<15}: {r.error}")
        else:
            out(f"  OK   {r.source:<15}: ${r.price:>14,.6f} ({r.latency_ms:.0f}ms)")

    prices = [r.price for r in results if r.price is not None]
    if prices:
        mid = median(prices)
        low, high = min(prices), max(prices)
        out(f"  Median: ${mid:,.6f}")
        out(f"  Range:  ${low:,.6f} - ${high:,.6f}")
        out(f"  Spread: {(high - low) / mid * 100:.4f}%")
    out(f"  Sources: {len(prices)}/{len(results)}")
    return len(prices)


async def validate_sources(
    pool: SourcePool,
    asset: TrackedAsset,
    out: Callable[[str], None],
    min_sources: int = MIN_SOURCES,
    max_deviation_bp: int = MAX_DEVIATION_BP,
) -> bool:
    """Check whether enough sources agree with the median to publish.

    :returns: True if at least min_sources readings are within max_deviation_bp.
    """
    out(f"Validating {asset}:")
    readings = await pool.fetch_all(asset)
    if len(readings) < min_sources:
        out(f"  Insufficient sources for validation ({len(readings)}, need {min_sources})")
        return False

    prices = [r.price for r in readings]
    out(f"  Median price: ${median(prices):,.6f}")
    within = 0
    for r in readings:
        deviation = deviation_bp(r.price, prices)
        ok = deviation <= max_deviation_bp
        within += ok
        out(f"  {r.source_name:<15} ${r.price:>14,.6f}  {deviation:>5}bp  {'valid' if ok else 'INVALID'}")
    out(f"  Within {max_deviation_bp}bp: {within}/{len(readings)}")
    return within >= min_sources


async def run(args: argparse.Namespace) -> int:
    api_keys = parse_env_api_keys()
    sources = args.sources.split(",") if args.sources else get_available_fetchers()
    pool = SourcePool(
        {s: get_fetcher(s, api_key=api_keys.get(s), timeout=args.timeout) for s in sources},
        fetch_timeout=args.timeout,
    )
    try:
        if args.command == "test":
            assets = [TrackedAsset(a) for a in args.assets] or TrackedAsset.parse_list(DEFAULT_ASSETS)
            working = 0
            for asset in assets:
                working += report_probe(asset, await probe_sources(pool, asset), print) > 0
                print()
            return 0 if working == len(assets) else 1

        ok = await validate_sources(pool, TrackedAsset(args.asset), print)
        return 0 if ok else 1
    finally:
        await BaseFetcher.close_shared_client()


def main() -> None:
    parser = argparse.ArgumentParser(description="Price source probe")
    parser.add_argument("--sources", help="Comma-separated sources (default: all)")
    parser.add_argument("--timeout", type=float, default=10.0)
    commands = parser.add_subparsers(dest="command", required=True)
    test = commands.add_parser("test", help="Probe every source for assets")
    test.add_argument("assets", nargs="*")
    validate = commands.add_parser("validate", help="Check source agreement for an asset")
    validate.add_argument("asset", nargs="?", default="BTC")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
