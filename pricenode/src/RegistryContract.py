"""RegistryContract: Web3 client for a deployed per-asset oracle contract.

Every transaction is signed locally with the node's account, submitted, and
confirmed by waiting for its receipt. Reverts are mapped to registry errors
by their revert reason ("KUSDOracle/node-not-active", ...).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception
from web3.middleware import SignAndSendRawMiddlewareBuilder

from .Registry import (
    STALENESS_THRESHOLD,
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
    from_fixed_point,
    is_fresh_at,
    publishable_fixed_point,
)
from .TrackedAsset import TrackedAsset, encode_bytes32

logger = logging.getLogger(__name__)

RECEIPT_TIMEOUT = 120  # seconds


def _abi_function(
    name: str,
    inputs: Sequence[tuple[str, str]] = (),
    outputs: Sequence[tuple[str, str]] = (),
    mutability: str = "nonpayable",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


ORACLE_ABI: list[dict[str, Any]] = [
    _abi_function(
        "updatePrice",
        [("newPrice", "uint256"), ("sourcePrices", "uint256[]"), ("sources", "bytes32[]")],
    ),
    _abi_function("emergencyUpdatePrice", [("newPrice", "uint256")]),
    _abi_function("invalidatePrice"),
    _abi_function("registerNode", [("node", "address"), ("stake", "uint256")]),
    _abi_function("deactivateNode", [("node", "address"), ("reason", "string")]),
    _abi_function(
        "getPriceData",
        outputs=[("price", "uint256"), ("timestamp", "uint256"), ("valid", "bool")],
        mutability="view",
    ),
    _abi_function("isFresh", outputs=[("", "bool")], mutability="view"),
    _abi_function("getActiveNodeCount", outputs=[("", "uint256")], mutability="view"),
    _abi_function(
        "nodes",
        [("", "address")],
        [("active", "bool"), ("stake", "uint256"), ("reputation", "uint256"), ("lastUpdate", "uint256")],
        mutability="view",
    ),
    _abi_function("wards", [("", "address")], [("", "uint256")], mutability="view"),
    _abi_function("asset", outputs=[("", "bytes32")], mutability="view"),
]

# Revert reason fragment -> registry error
REVERT_ERRORS: list[tuple[str, type[RegistryError]]] = [
    ("not-authorized", NotAuthorizedError),
    ("insufficient-sources", InsufficientSourcesError),
    ("length-mismatch", MismatchedInputError),
    ("price-validation-failed", PriceValidationError),
    ("invalid-price", PriceValidationError),
    ("already-active", PublisherStateError),
    ("node-not-active", NotAuthorizedError),
]


def connect(rpc_url: str, private_key: str, timeout: float = 30.0) -> tuple[Web3, LocalAccount]:
    """Create a Web3 connection that signs transactions with a local key.

    :param rpc_url: JSON-RPC endpoint.
    :param private_key: Hex private key of the node account.
    :param timeout: HTTP request timeout in seconds.
    :returns: Tuple of (web3, account).
    """
    w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    account: LocalAccount = Account.from_key(private_key)
    w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
    w3.eth.default_account = account.address
    return w3, account


def _to_registry_error(exc: ContractLogicError) -> RegistryError:
    reason = str(exc.message or exc)
    for fragment, error_cls in REVERT_ERRORS:
        if fragment in reason:
            return error_cls(reason)
    return RegistryUnavailableError(f"transaction reverted: {reason}")


class ContractRegistry(PriceRegistry):
    """Registry backed by an oracle contract deployed for one asset.

    :ivar w3: Web3 instance with the signing middleware installed.
    :ivar account: Account the node signs with; the only valid caller.
    :ivar contract: Bound oracle contract.
    """

    def __init__(
        self,
        asset: TrackedAsset,
        w3: Web3,
        address: str,
        account: LocalAccount,
        staleness_threshold: int = STALENESS_THRESHOLD,
        receipt_timeout: float = RECEIPT_TIMEOUT,
    ) -> None:
        """Bind to a deployed oracle contract.

        :param asset: Asset held by the contract.
        :param w3: Connected Web3 instance (see connect()).
        :param address: Contract address.
        :param account: Signing account.
        :param staleness_threshold: Seconds after which a value is stale.
        :param receipt_timeout: Seconds to wait for a transaction receipt.
        """
        super().__init__(asset, staleness_threshold)
        self.w3 = w3
        self.account = account
        self.receipt_timeout = receipt_timeout
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=ORACLE_ABI
        )

    @property
    def address(self) -> str:
        return self.contract.address

    def ping(self) -> None:
        try:
            connected = self.w3.is_connected()
        except (Web3Exception, OSError) as e:
            raise RegistryUnavailableError(f"RPC error: {e}") from e
        if not connected:
            raise RegistryUnavailableError("RPC endpoint is not reachable")

    def read_state(self) -> PublishedPrice:
        price_raw, timestamp, valid = self._call(self.contract.functions.getPriceData())
        fresh = is_fresh_at(timestamp, time.time(), self.staleness_threshold)
        return PublishedPrice(
            price=from_fixed_point(price_raw),
            timestamp=timestamp,
            valid=bool(valid) and fresh,
        )

    def is_fresh(self) -> bool:
        return bool(self._call(self.contract.functions.isFresh()))

    def get_publisher(self, identity: str) -> Publisher | None:
        if not Web3.is_address(identity):
            return None
        active, stake, _, last_update = self._call(
            self.contract.functions.nodes(Web3.to_checksum_address(identity))
        )
        if not active and stake == 0 and last_update == 0:
            return None
        # The contract does not record the registration time
        return Publisher(
            identity=identity,
            active=bool(active),
            registered_at=0,
            last_published_at=last_update,
            stake=stake,
        )

    def is_governor(self, identity: str) -> bool:
        if not Web3.is_address(identity):
            return False
        return self._call(self.contract.functions.wards(Web3.to_checksum_address(identity))) == 1

    def get_active_publisher_count(self) -> int:
        return self._call(self.contract.functions.getActiveNodeCount())

    def write(
        self,
        caller: str,
        price: float,
        source_prices: Sequence[float],
        source_names: Sequence[str],
    ) -> PublishedPrice:
        self._require_signer(caller)
        # Checked before submitting to avoid paying for a revert
        if not self.is_active_publisher(caller):
            raise NotAuthorizedError(f"{caller} is not an active publisher")
        if len(source_prices) < self.min_sources:
            raise InsufficientSourcesError(
                f"{len(source_prices)} source prices, {self.min_sources} required"
            )
        if len(source_prices) != len(source_names):
            raise MismatchedInputError(
                f"{len(source_prices)} source prices but {len(source_names)} source names"
            )
        raw_price = publishable_fixed_point(price)
        raw_sources = [publishable_fixed_point(p) for p in source_prices]

        self._transact(
            self.contract.functions.updatePrice(
                raw_price,
                raw_sources,
                [encode_bytes32(name) for name in source_names],
            )
        )
        return self.read_state()

    def emergency_write(self, caller: str, price: float) -> PublishedPrice:
        self._require_signer(caller)
        raw_price = publishable_fixed_point(price)
        self._transact(self.contract.functions.emergencyUpdatePrice(raw_price))
        return self.read_state()

    def invalidate(self, caller: str) -> PublishedPrice:
        self._require_signer(caller)
        self._transact(self.contract.functions.invalidatePrice())
        return self.read_state()

    def register_publisher(self, caller: str, identity: str, stake_hint: int = 0) -> Publisher:
        self._require_signer(caller)
        existing = self.get_publisher(identity)
        if existing is not None and existing.active:
            raise PublisherStateError(f"{identity} is already an active publisher")
        self._transact(
            self.contract.functions.registerNode(Web3.to_checksum_address(identity), stake_hint)
        )
        return self.get_publisher(identity)

    def deactivate_publisher(self, caller: str, identity: str, reason: str) -> Publisher:
        self._require_signer(caller)
        existing = self.get_publisher(identity)
        if existing is None or not existing.active:
            raise PublisherStateError(f"{identity} is not an active publisher")
        self._transact(
            self.contract.functions.deactivateNode(Web3.to_checksum_address(identity), reason)
        )
        return self.get_publisher(identity)

    def _require_signer(self, caller: str) -> None:
        if caller.lower() != self.account.address.lower():
            raise NotAuthorizedError(
                f"{caller} cannot sign for this node (account {self.account.address})"
            )

    def _call(self, fn: Any) -> Any:
        try:
            return fn.call()
        except ContractLogicError as e:
            raise _to_registry_error(e) from e
        except (Web3Exception, OSError) as e:
            raise RegistryUnavailableError(f"{self.asset} read failed: {e}") from e

    def _transact(self, fn: Any) -> dict[str, Any]:
        """Sign, submit and confirm a contract transaction.

        :param fn: Bound contract function.
        :returns: Transaction receipt.
        :raises RegistryError: Mapped from the revert reason, or
            RegistryUnavailableError on transport failure or a failed receipt.
        """
        try:
            tx_params = fn.build_transaction(
                {"from": self.account.address, "gasPrice": self.w3.eth.gas_price}
            )
            tx_hash = self.w3.eth.send_transaction(tx_params)
            tx_receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except ContractLogicError as e:
            raise _to_registry_error(e) from e
        except (Web3Exception, OSError) as e:
            raise RegistryUnavailableError(f"{self.asset} transaction failed: {e}") from e

        if tx_receipt["status"] != 1:
            raise RegistryUnavailableError(
                f"{self.asset} transaction {tx_hash.hex()} failed: {tx_receipt}"
            )
        logger.debug(f"[{self.asset}] {fn.fn_name} confirmed in tx {tx_hash.hex()}")
        return tx_receipt
