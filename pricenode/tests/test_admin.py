"""Unit tests for the registry administration commands."""

import pytest
from conftest import GOVERNOR, NODE

from pricenode.admin import build_parser, run_command
from pricenode.src.PublicationGate import PublicationGate
from pricenode.src.RegistryMemory import MemoryRegistry
from pricenode.src.TrackedAsset import TrackedAsset

BTC = TrackedAsset("BTC")
ETH = TrackedAsset("ETH")


@pytest.fixture
def gate() -> PublicationGate:
    return PublicationGate(
        {asset: MemoryRegistry(asset, governor=GOVERNOR) for asset in (BTC, ETH)}
    )


@pytest.fixture
def lines() -> list[str]:
    return []


def run(gate: PublicationGate, lines: list[str], *argv: str, caller: str = GOVERNOR) -> int:
    args = build_parser().parse_args(list(argv))
    return run_command(args, gate, caller, out=lines.append)


class TestRegister:
    def test_registers_on_every_asset(self, gate, lines) -> None:
        assert run(gate, lines, "register", NODE, "--stake", "10") == 0

        assert lines == ["BTC: ok", "ETH: ok"]
        for asset in (BTC, ETH):
            publisher = gate.registry(asset).get_publisher(NODE)
            assert publisher.active
            assert publisher.stake == 10

    def test_already_active(self, gate, lines) -> None:
        run(gate, lines, "register", NODE)
        lines.clear()

        assert run(gate, lines, "register", NODE) == 1
        assert lines[0].startswith("BTC: failed (already_active)")

    def test_not_governor(self, gate, lines) -> None:
        assert run(gate, lines, "register", NODE, caller=NODE) == 1
        assert "not_authorized" in lines[0]


class TestDeactivate:
    def test_deactivate(self, gate, lines) -> None:
        run(gate, lines, "register", NODE)

        assert run(gate, lines, "deactivate", NODE, "--reason", "key rotation") == 0
        assert not gate.registry(BTC).is_active_publisher(NODE)

    def test_not_active(self, gate, lines) -> None:
        assert run(gate, lines, "deactivate", NODE) == 1
        assert "not_active" in lines[0]


class TestEmergencyAndInvalidate:
    def test_emergency_single_asset(self, gate, lines) -> None:
        assert run(gate, lines, "emergency", "eth", "3000.5") == 0

        assert lines == ["ETH: ok"]
        assert gate.registry(ETH).read_price() == 3000.5
        assert not gate.registry(BTC).read_state().valid

    def test_unknown_asset(self, gate, lines) -> None:
        assert run(gate, lines, "emergency", "DAI", "1.0") == 1
        assert lines == ["No oracle configured for DAI"]

    def test_invalidate(self, gate, lines) -> None:
        run(gate, lines, "emergency", "BTC", "50000")

        assert run(gate, lines, "invalidate", "BTC") == 0
        assert not gate.registry(BTC).read_state().valid


class TestStatus:
    def test_status(self, gate, lines) -> None:
        run(gate, lines, "register", NODE)
        run(gate, lines, "emergency", "BTC", "50000")
        lines.clear()

        assert run(gate, lines, "status", NODE, "unknown") == 0

        text = "\n".join(lines)
        assert "price:          $50,000.000000" in text
        assert "last update:    never" in text
        assert "active nodes:   1" in text
        assert f"{NODE}: active=True" in text
        assert "unknown: not registered" in text
