"""
Royalty Sweeper - Ledger Mock Interface
In-memory ledger honoring sequence-number ordering

This is a MOCK implementation.
In production, the sweeper talks to a Cedra node via CedraLedgerClient.

Contract:
    - Sweeper queries the ledger for escrow balances and sequence numbers
    - Sweeper does NOT own ledger truth
    - Ledger rejects any transaction whose sequence number is not the
      account's current one, and settles a batch atomically
"""

import hashlib
import json
import time
from collections import deque

from royalty_sweeper.bridges.ledger import SWEEP_FUNCTION, SWEEP_MANY_FUNCTION, LedgerBridge
from royalty_sweeper.core.exceptions import QueryError, SubmissionError
from royalty_sweeper.core.types import parse_address
from royalty_sweeper.models.schemas import LedgerTransaction, UnsignedTransaction


class LedgerMock(LedgerBridge):
    """
    Mock Ledger

    Configurable balances, sequence numbers and injected faults
    for testing scenarios.
    """

    def __init__(self, module_address: str = "0xc0ffee") -> None:
        self.module_address = parse_address(module_address)
        self._balances: dict[tuple[str, str], int] = {}
        self._sequences: dict[str, int] = {}
        self._committed: dict[str, LedgerTransaction] = {}

        # Fault injection
        self._balance_failures: set[str] = set()
        self._sequence_failures: int = 0
        self._submit_failures: deque[SubmissionError] = deque()
        self._wait_failures: deque[SubmissionError] = deque()

        # Call log for assertions
        self.balance_queries: list[tuple[str, str]] = []
        self.sequence_queries: list[str] = []
        self.submissions: list[UnsignedTransaction] = []

    # ----------------------------------------
    # Scenario setup
    # ----------------------------------------

    def set_balance(self, nft_address: str, fa_metadata_address: str, amount: int) -> None:
        self._balances[(parse_address(nft_address), parse_address(fa_metadata_address))] = amount

    def balance_of(self, nft_address: str, fa_metadata_address: str) -> int:
        return self._balances.get((parse_address(nft_address), parse_address(fa_metadata_address)), 0)

    def set_sequence(self, address: str, sequence_number: int) -> None:
        self._sequences[parse_address(address)] = sequence_number

    def sequence_of(self, address: str) -> int:
        return self._sequences.get(parse_address(address), 0)

    def fail_balance_query(self, nft_address: str) -> None:
        self._balance_failures.add(parse_address(nft_address))

    def fail_sequence_queries(self, count: int = 1) -> None:
        self._sequence_failures += count

    def fail_next_submit(self, reason: str = "network error") -> None:
        """Reject the next submission before it reaches the ledger."""
        self._submit_failures.append(SubmissionError(reason))

    def fail_next_wait(self, reason: str = "timed out waiting for transaction") -> None:
        """Commit the next submission but report a failure while waiting for it."""
        self._wait_failures.append(SubmissionError(reason))

    # ----------------------------------------
    # LedgerBridge
    # ----------------------------------------

    async def get_escrow_balance(self, nft_address: str, fa_metadata_address: str) -> int:
        nft = parse_address(nft_address)
        fa = parse_address(fa_metadata_address)
        self.balance_queries.append((nft, fa))
        if nft in self._balance_failures:
            raise QueryError(f"view {nft} failed: injected fault", address=nft)
        return self._balances.get((nft, fa), 0)

    async def get_account_sequence(self, address: str) -> int:
        address = parse_address(address)
        self.sequence_queries.append(address)
        if self._sequence_failures > 0:
            self._sequence_failures -= 1
            raise QueryError(f"get account {address} failed: injected fault", address=address)
        return self._sequences.get(address, 0)

    async def encode_submission(self, txn: UnsignedTransaction) -> bytes:
        return b"RawTransaction::" + json.dumps(txn.to_request(), sort_keys=True).encode("utf-8")

    async def submit_signed(
        self,
        txn: UnsignedTransaction,
        public_key_hex: str,
        signature: bytes,
    ) -> LedgerTransaction:
        self.submissions.append(txn)

        if self._submit_failures:
            raise self._submit_failures.popleft()

        expected = self._sequences.get(txn.sender, 0)
        if txn.sequence_number < expected:
            raise SubmissionError("submit rejected (400): SEQUENCE_NUMBER_TOO_OLD", vm_status="SEQUENCE_NUMBER_TOO_OLD")
        if txn.sequence_number > expected:
            raise SubmissionError("submit rejected (400): SEQUENCE_NUMBER_TOO_NEW", vm_status="SEQUENCE_NUMBER_TOO_NEW")
        if txn.expiration_timestamp_secs <= time.time():
            raise SubmissionError("submit rejected (400): TRANSACTION_EXPIRED", vm_status="TRANSACTION_EXPIRED")

        tx_hash = "0x" + hashlib.sha256(signature + txn.sender.encode("utf-8")).hexdigest()
        self._execute(txn.payload)
        self._sequences[txn.sender] = expected + 1
        self._committed[tx_hash] = LedgerTransaction(
            hash=tx_hash,
            type="user_transaction",
            success=True,
            vm_status="Executed successfully",
            version=str(len(self._committed) + 1),
        )
        return LedgerTransaction(hash=tx_hash)

    async def wait_for_transaction(
        self,
        tx_hash: str,
        expiration_timestamp_secs: int,
    ) -> LedgerTransaction:
        if self._wait_failures:
            raise self._wait_failures.popleft()
        txn = self._committed.get(tx_hash)
        if txn is None:
            raise SubmissionError(f"transaction {tx_hash} not found", tx_hash=tx_hash)
        return txn

    def _execute(self, payload: dict) -> None:
        """Sweep moves every listed escrow balance out, all at once."""
        function = payload["function"].rsplit("::", 1)[-1]
        nfts, fa = payload["arguments"]
        if function == SWEEP_FUNCTION:
            nfts = [nfts]
        elif function != SWEEP_MANY_FUNCTION:
            raise SubmissionError(f"unknown entry function {payload['function']}")
        for nft in nfts:
            self._balances[(parse_address(nft), parse_address(fa))] = 0
