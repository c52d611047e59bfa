"""Unit tests for the node CLI configuration helpers."""

import pytest

from pricenode.main import (
    build_parser,
    build_registries,
    parse_api_keys,
    parse_env_api_keys,
    parse_registry_addresses,
)
from pricenode.src.RegistryMemory import MemoryRegistry
from pricenode.src.TrackedAsset import TrackedAsset

BTC = TrackedAsset("BTC")
ETH = TrackedAsset("ETH")
SOURCES = ["binance", "coinbase", "kraken"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ORACLE_NODE_ID",
        "ASSETS",
        "SOURCES",
        "RPC_URL",
        "PRIVATE_KEY",
        "ORACLE_UPDATE_INTERVAL",
        "HEALTH_CHECK_INTERVAL",
        "ORACLE_MAX_DEVIATION",
        "STALENESS_THRESHOLD",
        "FETCH_TIMEOUT",
        "FETCH_RETRIES",
        "ALERT_WEBHOOK_URL",
        "LOG_DIR",
        "API_KEYS",
        "BTC_ORACLE_ADDRESS",
        "ETH_ORACLE_ADDRESS",
        "API_KEY_COINGECKO",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestParseApiKeys:
    def test_parse(self) -> None:
        assert parse_api_keys("CoinGecko=abc, cryptocompare=xyz") == {
            "coingecko": "abc",
            "cryptocompare": "xyz",
        }

    def test_empty(self) -> None:
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}

    def test_malformed_entries_skipped(self) -> None:
        assert parse_api_keys("coingecko,kraken=k=v") == {"kraken": "k=v"}

    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_KEY_COINGECKO", "demo:CG-1")
        assert parse_env_api_keys()["coingecko"] == "demo:CG-1"


class TestParseRegistryAddresses:
    def test_env_per_asset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BTC_ORACLE_ADDRESS", "0xbtc")
        assert parse_registry_addresses(None, [BTC, ETH]) == {BTC: "0xbtc"}

    def test_cli_overrides_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BTC_ORACLE_ADDRESS", "0xenv")
        addresses = parse_registry_addresses("btc=0xcli,ETH=0xeth", [BTC, ETH])
        assert addresses == {BTC: "0xcli", ETH: "0xeth"}

    def test_untracked_assets_ignored(self) -> None:
        assert parse_registry_addresses("DAI=0xdai", [BTC]) == {}


class TestBuildParser:
    def test_defaults(self) -> None:
        args = build_parser(SOURCES).parse_args([])

        assert args.node_id == "pricenode-1"
        assert args.assets == "BTC,ETH,USDT,USDC,DAI"
        assert args.sources == "binance,coinbase,kraken"
        assert args.update_interval == 60
        assert args.health_interval == 300
        assert args.max_deviation_bp == 1000
        assert args.staleness_threshold == 3600
        assert args.fetch_timeout == 10.0
        assert args.fetch_retries == 3
        assert not args.memory_registry
        assert not args.verbose

    def test_environment_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ORACLE_UPDATE_INTERVAL", "30")
        monkeypatch.setenv("ORACLE_MAX_DEVIATION", "500")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        args = build_parser(SOURCES).parse_args([])

        assert args.update_interval == 30
        assert args.max_deviation_bp == 500
        assert args.verbose

    def test_cli_takes_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ORACLE_UPDATE_INTERVAL", "30")
        args = build_parser(SOURCES).parse_args(["--update-interval", "15"])
        assert args.update_interval == 15


class TestBuildRegistries:
    def test_memory_registry(self) -> None:
        """Dry-run registries make the node its own governor and publisher."""
        parser = build_parser(SOURCES)
        args = parser.parse_args(
            ["--memory-registry", "--node-id", "dry-1", "--staleness-threshold", "120"]
        )

        registries, identity = build_registries(args, parser, [BTC, ETH])

        assert identity == "dry-1"
        assert set(registries) == {BTC, ETH}
        for registry in registries.values():
            assert isinstance(registry, MemoryRegistry)
            assert registry.is_governor("dry-1")
            assert registry.is_active_publisher("dry-1")
            assert registry.staleness_threshold == 120

    def test_contract_mode_requires_rpc_url(self) -> None:
        parser = build_parser(SOURCES)
        args = parser.parse_args([])

        with pytest.raises(SystemExit):
            build_registries(args, parser, [BTC])
