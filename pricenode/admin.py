#!/usr/bin/env python3
"""Registry administration for deployed oracle contracts.

Subcommands:
    register <address>        Authorize a publisher on every asset's oracle
    deactivate <address>      Revoke a publisher (the record is kept)
    emergency <asset> <price> Write a price directly, skipping source checks
    invalidate <asset>        Mark an asset's price invalid
    status [address ...]      Show price state, freshness and publishers

All write commands must be run with a governor key.
"""

import argparse
import logging
import os
import sys
from collections.abc import Callable
from datetime import datetime

from .main import DEFAULT_ASSETS, LOG_FORMAT, parse_registry_addresses
from .src.PublicationGate import PublicationGate, PublishResult
from .src.Registry import RegistryError
from .src.RegistryContract import ContractRegistry, connect
from .src.TrackedAsset import TrackedAsset


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Price Node registry administration")
    parser.add_argument("--rpc-url", dest="rpc_url", default=os.environ.get("RPC_URL"))
    parser.add_argument("--private-key", dest="private_key", default=os.environ.get("PRIVATE_KEY"))
    parser.add_argument(
        "--assets",
        default=os.environ.get("ASSETS") or DEFAULT_ASSETS,
        help=f"Comma-separated assets (default: {DEFAULT_ASSETS})",
    )
    parser.add_argument(
        "--registry-addresses",
        dest="registry_addresses",
        help="Comma-separated oracle contract addresses (e.g., BTC=0x...,ETH=0x...)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Authorize a publisher")
    register.add_argument("address")
    register.add_argument("--stake", type=int, default=0, help="Stake hint (default: 0)")

    deactivate = commands.add_parser("deactivate", help="Revoke a publisher")
    deactivate.add_argument("address")
    deactivate.add_argument("--reason", default="Deactivated by operator")

    emergency = commands.add_parser("emergency", help="Write a price directly")
    emergency.add_argument("asset")
    emergency.add_argument("price", type=float)

    invalidate = commands.add_parser("invalidate", help="Mark a price invalid")
    invalidate.add_argument("asset")

    status = commands.add_parser("status", help="Show registry state")
    status.add_argument("addresses", nargs="*", help="Publisher addresses to inspect")

    return parser


def run_command(
    args: argparse.Namespace,
    gate: PublicationGate,
    caller: str,
    out: Callable[[str], None] = print,
) -> int:
    """Execute a parsed subcommand against the gate.

    :param args: Parsed arguments.
    :param gate: Gate holding the registries of the selected assets.
    :param caller: Identity the commands are sent as.
    :param out: Line printer.
    :returns: Process exit code (0 if every operation succeeded).
    """
    if args.command == "status":
        return _status(gate, args.addresses, out)

    if args.command in ("emergency", "invalidate"):
        asset = TrackedAsset(args.asset)
        if asset not in gate.registries:
            out(f"No oracle configured for {asset}")
            return 1
        targets = [asset]
    else:
        targets = gate.assets

    failures = 0
    for asset in targets:
        if args.command == "register":
            result = gate.register_publisher(asset, caller, args.address, args.stake)
        elif args.command == "deactivate":
            result = gate.deactivate_publisher(asset, caller, args.address, args.reason)
        elif args.command == "emergency":
            result = gate.emergency_publish(asset, caller, args.price)
        else:
            result = gate.invalidate(asset, caller)
        failures += 0 if result.ok else 1
        out(f"{asset}: {_describe(result)}")
    return 1 if failures else 0


def _describe(result: PublishResult) -> str:
    if result.ok:
        return "ok"
    return f"failed ({result.error.value}): {result.detail}"


def _status(gate: PublicationGate, addresses: list[str], out: Callable[[str], None]) -> int:
    failures = 0
    for asset in gate.assets:
        registry = gate.registry(asset)
        try:
            state = registry.read_state()
            fresh = registry.is_fresh()
            active = registry.get_active_publisher_count()
            publishers = {a: registry.get_publisher(a) for a in addresses}
        except RegistryError as e:
            failures += 1
            out(f"{asset}: error: {e}")
            continue

        updated = (
            datetime.fromtimestamp(state.timestamp).isoformat(sep=" ")
            if state.timestamp
            else "never"
        )
        out(f"{asset}")
        out(f"  price:          ${state.price:,.6f}")
        out(f"  last update:    {updated}")
        out(f"  valid:          {state.valid}")
        out(f"  fresh:          {fresh}")
        out(f"  active nodes:   {active}")
        for address, publisher in publishers.items():
            if publisher is None:
                out(f"  {address}: not registered")
            else:
                out(
                    f"  {address}: active={publisher.active} stake={publisher.stake} "
                    f"last_published_at={publisher.last_published_at}"
                )
    return 1 if failures else 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    if not args.rpc_url:
        parser.error("--rpc-url (or RPC_URL) is required")
    if not args.private_key:
        parser.error("--private-key (or PRIVATE_KEY) is required")

    try:
        assets = TrackedAsset.parse_list(args.assets)
    except ValueError as e:
        parser.error(str(e))
    addresses = parse_registry_addresses(args.registry_addresses, assets)
    if not addresses:
        parser.error("No oracle address configured for any asset")

    w3, account = connect(args.rpc_url, args.private_key)
    gate = PublicationGate(
        {asset: ContractRegistry(asset, w3, address, account) for asset, address in addresses.items()}
    )
    sys.exit(run_command(args, gate, account.address))


if __name__ == "__main__":
    main()
