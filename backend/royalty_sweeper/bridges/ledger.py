"""
Royalty Sweeper - Ledger Bridge

Boundary to the Cedra ledger REST API (/v1):
- View calls (gas-free) for escrow balances
- Account reads for the gas account's sequence number
- Entry-function transactions: encode → sign → submit → wait

The bridge never retries and never touches sequence numbers.
Retry and resync policy belongs to the submission state machine.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from royalty_sweeper.core.exceptions import QueryError, SubmissionError
from royalty_sweeper.core.types import parse_address, to_u64
from royalty_sweeper.models.schemas import (
    Batch,
    EntryFunctionCall,
    EscrowKey,
    LedgerTransaction,
    UnsignedTransaction,
)

logger = logging.getLogger(__name__)

DEFAULT_NODE_URL = "https://testnet.cedra.dev"

VIEWS_MODULE = "vault_views"
OPS_MODULE = "vault_ops"
ESCROW_BALANCE_VIEW = "get_royalty_escrow_balance"
SWEEP_FUNCTION = "sweep_royalty_to_core_vault"
SWEEP_MANY_FUNCTION = "sweep_royalty_to_core_vault_many"

ED25519_SIGNATURE = "ed25519_signature"


def normalize_node_url(node_url: str) -> str:
    """REST root with the /v1 suffix and no trailing slash."""
    url = node_url.rstrip("/")
    if not url.endswith("/v1"):
        url = f"{url}/v1"
    return url


# ============================================
# Bridge Interface
# ============================================

class LedgerBridge(ABC):
    """
    Abstract interface to the ledger.

    The sweeper uses this bridge to:
    - Read escrow balances
    - Read the gas account's authoritative sequence number
    - Turn a stamped transaction into a signing message
    - Publish a signed transaction and wait for its outcome
    """

    module_address: str

    def build_sweep_call(self, key: EscrowKey) -> EntryFunctionCall:
        """Single-escrow sweep payload."""
        return EntryFunctionCall(
            module_address=self.module_address,
            module_name=OPS_MODULE,
            function_name=SWEEP_FUNCTION,
            arguments=[key.nft_address, key.fa_metadata_address],
        )

    def build_sweep_many_call(self, batch: Batch) -> EntryFunctionCall:
        """Batch sweep payload; the ledger settles every listed escrow atomically."""
        return EntryFunctionCall(
            module_address=self.module_address,
            module_name=OPS_MODULE,
            function_name=SWEEP_MANY_FUNCTION,
            arguments=[batch.nft_addresses, batch.fa_metadata_address],
        )

    @abstractmethod
    async def get_escrow_balance(self, nft_address: str, fa_metadata_address: str) -> int:
        """Escrow balance for one NFT and asset type. Raises QueryError."""
        pass

    @abstractmethod
    async def get_account_sequence(self, address: str) -> int:
        """Authoritative sequence number of an account. Raises QueryError."""
        pass

    @abstractmethod
    async def encode_submission(self, txn: UnsignedTransaction) -> bytes:
        """Signing message for a stamped transaction. Raises SubmissionError."""
        pass

    @abstractmethod
    async def submit_signed(
        self,
        txn: UnsignedTransaction,
        public_key_hex: str,
        signature: bytes,
    ) -> LedgerTransaction:
        """Publish a signed transaction. Raises SubmissionError on rejection."""
        pass

    @abstractmethod
    async def wait_for_transaction(
        self,
        tx_hash: str,
        expiration_timestamp_secs: int,
    ) -> LedgerTransaction:
        """Block until committed. Raises SubmissionError on failure or expiry."""
        pass


# ============================================
# REST Implementation
# ============================================

class CedraLedgerClient(LedgerBridge):
    """Client for the Cedra node REST API."""

    def __init__(
        self,
        node_url: str = DEFAULT_NODE_URL,
        module_address: str = "0x1",
        http_timeout: float = 15.0,
        poll_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = normalize_node_url(node_url)
        self.module_address = parse_address(module_address)
        self.poll_interval = poll_interval
        self.client = httpx.AsyncClient(timeout=http_timeout, transport=transport)

    async def __aenter__(self) -> "CedraLedgerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # ----------------------------------------
    # Reads
    # ----------------------------------------

    async def get_chain_id(self) -> int:
        """Ledger index probe, used at startup to prove the node is reachable."""
        data = await self._get_json(self.base_url, what="ledger index")
        try:
            return int(data["chain_id"])
        except (KeyError, TypeError, ValueError):
            raise QueryError(f"ledger index has no chain_id: {data!r}")

    async def get_escrow_balance(self, nft_address: str, fa_metadata_address: str) -> int:
        values = await self._view(
            ESCROW_BALANCE_VIEW,
            [nft_address, fa_metadata_address],
            address=nft_address,
        )
        if not values:
            raise QueryError(f"view {ESCROW_BALANCE_VIEW} returned no values", address=nft_address)
        try:
            return to_u64(values[-1])
        except ValueError as e:
            raise QueryError(f"view {ESCROW_BALANCE_VIEW} returned {values[-1]!r}: {e}", address=nft_address)

    async def get_account_sequence(self, address: str) -> int:
        data = await self._get_json(
            f"{self.base_url}/accounts/{address}",
            what="account",
            address=address,
        )
        try:
            return to_u64(data["sequence_number"])
        except (KeyError, TypeError, ValueError):
            raise QueryError(f"account {address} has no valid sequence_number: {data!r}", address=address)

    async def _view(self, function: str, arguments: list[Any], address: Optional[str] = None) -> list:
        body = {
            "function": f"{self.module_address}::{VIEWS_MODULE}::{function}",
            "type_arguments": [],
            "arguments": arguments,
        }
        try:
            response = await self.client.post(f"{self.base_url}/view", json=body)
        except httpx.HTTPError as e:
            raise QueryError(f"view {function} failed: {e!r}", address=address)

        if response.status_code != 200:
            raise QueryError(
                f"view {function} returned {response.status_code}: {_error_message(response)}",
                address=address,
            )
        try:
            values = response.json()
        except ValueError:
            raise QueryError(f"view {function} returned invalid JSON", address=address)
        if not isinstance(values, list):
            raise QueryError(f"view {function} returned {type(values).__name__}, expected list", address=address)
        return values

    async def _get_json(self, url: str, what: str, address: Optional[str] = None) -> dict:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise QueryError(f"get {what} failed: {e!r}", address=address)

        if response.status_code != 200:
            raise QueryError(
                f"get {what} returned {response.status_code}: {_error_message(response)}",
                address=address,
            )
        try:
            return response.json()
        except ValueError:
            raise QueryError(f"get {what} returned invalid JSON", address=address)

    # ----------------------------------------
    # Transactions
    # ----------------------------------------

    async def encode_submission(self, txn: UnsignedTransaction) -> bytes:
        try:
            response = await self.client.post(
                f"{self.base_url}/transactions/encode_submission",
                json=txn.to_request(),
            )
        except httpx.HTTPError as e:
            raise SubmissionError(f"encode submission failed: {e!r}")

        if response.status_code != 200:
            raise SubmissionError(
                f"encode submission returned {response.status_code}: {_error_message(response)}"
            )
        try:
            message_hex = response.json()
            return bytes.fromhex(message_hex.removeprefix("0x"))
        except (ValueError, AttributeError):
            raise SubmissionError(f"encode submission returned invalid signing message: {response.text}")

    async def submit_signed(
        self,
        txn: UnsignedTransaction,
        public_key_hex: str,
        signature: bytes,
    ) -> LedgerTransaction:
        body = {
            **txn.to_request(),
            "signature": {
                "type": ED25519_SIGNATURE,
                "public_key": public_key_hex,
                "signature": "0x" + signature.hex(),
            },
        }
        try:
            response = await self.client.post(f"{self.base_url}/transactions", json=body)
        except httpx.HTTPError as e:
            raise SubmissionError(f"submit failed: {e!r}")

        if response.status_code not in (200, 202):
            raise SubmissionError(
                f"submit rejected ({response.status_code}): {_error_message(response)}",
                vm_status=_vm_error_code(response),
            )
        try:
            pending = LedgerTransaction.model_validate(response.json())
        except ValueError:
            raise SubmissionError(f"submit returned invalid body: {response.text}")

        logger.debug(f"[LEDGER] Submitted {pending.hash} seq={txn.sequence_number}")
        return pending

    async def wait_for_transaction(
        self,
        tx_hash: str,
        expiration_timestamp_secs: int,
    ) -> LedgerTransaction:
        url = f"{self.base_url}/transactions/wait_by_hash/{tx_hash}"
        while True:
            txn = await self._fetch_transaction(url, tx_hash)
            if txn is not None and not txn.is_pending:
                return _check_committed(txn)

            if time.time() > expiration_timestamp_secs:
                raise SubmissionError(
                    f"transaction {tx_hash} not committed before expiration {expiration_timestamp_secs}",
                    tx_hash=tx_hash,
                )
            url = f"{self.base_url}/transactions/by_hash/{tx_hash}"
            await asyncio.sleep(self.poll_interval)

    async def _fetch_transaction(self, url: str, tx_hash: str) -> Optional[LedgerTransaction]:
        """None while the node does not know the hash yet."""
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise SubmissionError(f"wait for {tx_hash} failed: {e!r}", tx_hash=tx_hash)

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise SubmissionError(
                f"wait for {tx_hash} returned {response.status_code}: {_error_message(response)}",
                tx_hash=tx_hash,
            )
        try:
            return LedgerTransaction.model_validate(response.json())
        except ValueError:
            raise SubmissionError(f"wait for {tx_hash} returned invalid body", tx_hash=tx_hash)


def _check_committed(txn: LedgerTransaction) -> LedgerTransaction:
    if not txn.success:
        raise SubmissionError(
            f"transaction {txn.hash} failed: {txn.vm_status}",
            tx_hash=txn.hash,
            vm_status=txn.vm_status,
        )
    return txn


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text


def _vm_error_code(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("vm_error_code") is not None:
        return str(data["vm_error_code"])
    return None
