"""TrackedAsset: Asset symbol used as the key for all per-asset state.

The on-chain registry identifies an asset by its symbol packed into a
bytes32 value (UTF-8, right-padded with zero bytes), the same encoding
as ethers' ``encodeBytes32String``.

.. code-block:: python

    >>> asset = TrackedAsset("btc")
    >>> str(asset)
    'BTC'
    >>> asset.asset_key[:3]
    b'BTC'
    >>> TrackedAsset.parse_list("btc, eth")
    [TrackedAsset(symbol='BTC'), TrackedAsset(symbol='ETH')]
"""

from __future__ import annotations

from dataclasses import dataclass

from web3 import Web3

ASSET_KEY_LENGTH = 32


def encode_bytes32(text: str) -> bytes:
    """Encode a short string as UTF-8 right-padded to 32 bytes.

    :raises ValueError: If the encoded string is longer than 32 bytes.
    """
    raw = Web3.to_bytes(text=text)
    if len(raw) > ASSET_KEY_LENGTH:
        raise ValueError(f"'{text}' is longer than {ASSET_KEY_LENGTH} bytes")
    return raw.ljust(ASSET_KEY_LENGTH, b"\x00")


@dataclass(frozen=True)
class TrackedAsset:
    """An asset whose USD price is tracked and published.

    Instances are immutable and hashable, so they can key dicts.

    :ivar symbol: Upper-case asset symbol (e.g., "BTC").
    """

    symbol: str

    def __post_init__(self) -> None:
        """Normalize and check the symbol.

        :raises ValueError: If the symbol is empty or does not fit in bytes32.
        """
        symbol = self.symbol.strip().upper()
        if not symbol:
            raise ValueError("Asset symbol must not be empty")
        if len(symbol.encode("utf-8")) > ASSET_KEY_LENGTH:
            raise ValueError(
                f"Asset symbol '{symbol}' is longer than {ASSET_KEY_LENGTH} bytes"
            )
        object.__setattr__(self, "symbol", symbol)

    def __str__(self) -> str:
        """Return the asset symbol."""
        return self.symbol

    @property
    def asset_key(self) -> bytes:
        """Return the bytes32 registry key for this asset.

        .. code-block:: python

            >>> len(TrackedAsset("ETH").asset_key)
            32
        """
        return encode_bytes32(self.symbol)

    @classmethod
    def from_asset_key(cls, key: bytes) -> TrackedAsset:
        """Decode a bytes32 registry key back into an asset.

        :param key: 32-byte key as stored by the registry.
        :returns: New TrackedAsset instance.
        :raises ValueError: If the key is not 32 bytes.
        """
        if len(key) != ASSET_KEY_LENGTH:
            raise ValueError(f"Asset key must be {ASSET_KEY_LENGTH} bytes, got {len(key)}")
        return cls(key.rstrip(b"\x00").decode("utf-8"))

    @classmethod
    def parse_list(cls, assets_str: str) -> list[TrackedAsset]:
        """Parse a comma-separated list of symbols, dropping duplicates.

        :param assets_str: String like "BTC,ETH,USDT".
        :returns: Assets in the order given.
        :raises ValueError: If any symbol is invalid.
        """
        assets: list[TrackedAsset] = []
        for part in assets_str.split(","):
            if not part.strip():
                continue
            asset = cls(part)
            if asset not in assets:
                assets.append(asset)
        return assets
