"""
Royalty Sweeper - Gas Account & Sequence Tracker

The gas-paying account signs every sweep transaction.
Its sequence number is the only mutable shared state in the process:
    - Refreshed from the ledger at startup and after every failed submission
    - Advanced locally only after the ledger confirms a submission
    - Owned by the submission state machine, nobody else mutates it
"""

import hashlib
import logging
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from royalty_sweeper.bridges.ledger import LedgerBridge
from royalty_sweeper.core.exceptions import ConfigError
from royalty_sweeper.core.types import parse_address, to_u64

logger = logging.getLogger(__name__)

PRIVATE_KEY_PREFIX = "ed25519-priv-"
ED25519_SCHEME = b"\x00"


def load_ed25519_private_key_from_hex(private_key_hex: str) -> Ed25519PrivateKey:
    """Accepts bare hex, 0x-prefixed hex, or the ed25519-priv-0x... form."""
    raw = private_key_hex.strip()
    if raw.startswith(PRIVATE_KEY_PREFIX):
        raw = raw[len(PRIVATE_KEY_PREFIX):]
    if raw[:2].lower() == "0x":
        raw = raw[2:]
    try:
        key_bytes = bytes.fromhex(raw)
    except ValueError:
        raise ConfigError("Invalid Ed25519 private key: not hex")
    if len(key_bytes) != 32:
        raise ConfigError(f"Invalid Ed25519 private key length: {len(key_bytes)} bytes")
    return Ed25519PrivateKey.from_private_bytes(key_bytes)


def derive_address(public_key: bytes) -> str:
    """Single-key Ed25519 authentication key: sha3_256(public_key || scheme)."""
    return "0x" + hashlib.sha3_256(public_key + ED25519_SCHEME).hexdigest()


class GasAccount:
    """Signing material and address of the account paying for sweeps."""

    def __init__(self, private_key: Ed25519PrivateKey, address: Optional[str] = None) -> None:
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.address = parse_address(address) if address else derive_address(self._public_key)

    @classmethod
    def from_private_key(cls, private_key_hex: str, address: Optional[str] = None) -> "GasAccount":
        key = load_ed25519_private_key_from_hex(private_key_hex)
        if address:
            try:
                address = parse_address(address)
            except ValueError as e:
                raise ConfigError(f"Invalid gas account address: {e}")
        return cls(key, address)

    @property
    def public_key_hex(self) -> str:
        return "0x" + self._public_key.hex()

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def __repr__(self) -> str:
        return f"GasAccount(address={self.address})"


class SequenceTracker:
    """Local copy of the gas account's sequence number."""

    def __init__(self, ledger: LedgerBridge, address: str, initial: int = 0) -> None:
        self._ledger = ledger
        self._address = address
        self._value = to_u64(initial)

    @property
    def address(self) -> str:
        return self._address

    def current(self) -> int:
        """Sequence number to stamp on the next transaction."""
        return self._value

    def advance(self) -> None:
        """Call only after the ledger confirmed the transaction stamped with current()."""
        self._value = to_u64(self._value + 1)

    async def refresh(self) -> None:
        """Overwrite the local value with the ledger's. Raises QueryError."""
        previous = self._value
        self._value = await self._ledger.get_account_sequence(self._address)
        if previous != self._value:
            logger.info(f"[SEQUENCE] Resynced {self._address}: {previous} -> {self._value}")
        else:
            logger.debug(f"[SEQUENCE] Resynced {self._address}: unchanged at {self._value}")
