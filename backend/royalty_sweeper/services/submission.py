"""
Royalty Sweeper - Submission State Machine
Serial transaction submission for the gas account

States:
    IDLE → BUILDING → SIGNED → SUBMITTED → CONFIRMED | REJECTED → IDLE

Rules:
    - One submission in flight at a time (build → sign → submit → confirm/reject
      → advance-or-refresh is a single critical section)
    - The sequence number advances only after the ledger confirms
    - Any failure resyncs the sequence number from the ledger, best-effort,
      and the original failure propagates to the caller
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Optional

from royalty_sweeper.bridges.ledger import LedgerBridge
from royalty_sweeper.core.exceptions import QueryError, SubmissionError
from royalty_sweeper.core.types import short_address
from royalty_sweeper.models.schemas import (
    Batch,
    EntryFunctionCall,
    EscrowKey,
    LedgerTransaction,
    SubmissionState,
    SubmissionTransition,
    SweepOutcome,
    SweepStatus,
    UnsignedTransaction,
)
from royalty_sweeper.services.gas_account import GasAccount, SequenceTracker

logger = logging.getLogger(__name__)

TRANSITION_LOG_LIMIT = 256


class InvalidTransition(Exception):
    """Raised when the machine is driven into a state it cannot reach."""
    pass


class SubmissionStateMachine:
    """
    Owns the gas account and its sequence tracker.

    Nothing outside this class reads or writes the sequence number while
    a submission is in flight.
    """

    VALID_TRANSITIONS: dict[SubmissionState, set[SubmissionState]] = {
        SubmissionState.IDLE: {SubmissionState.BUILDING},
        SubmissionState.BUILDING: {SubmissionState.SIGNED, SubmissionState.REJECTED},
        SubmissionState.SIGNED: {SubmissionState.SUBMITTED, SubmissionState.REJECTED},
        SubmissionState.SUBMITTED: {SubmissionState.CONFIRMED, SubmissionState.REJECTED},
        SubmissionState.CONFIRMED: {SubmissionState.IDLE},
        SubmissionState.REJECTED: {SubmissionState.IDLE},
    }

    def __init__(
        self,
        ledger: LedgerBridge,
        account: GasAccount,
        tracker: Optional[SequenceTracker] = None,
        timeout_secs: int = 30,
        max_gas_amount: int = 5_000,
        gas_unit_price: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._account = account
        self._tracker = tracker or SequenceTracker(ledger, account.address)
        self._timeout_secs = timeout_secs
        self._max_gas_amount = max_gas_amount
        self._gas_unit_price = gas_unit_price
        self._clock = clock

        self._lock = asyncio.Lock()
        self._state: SubmissionState = SubmissionState.IDLE
        self._needs_resync = False
        self._transition_log: deque[SubmissionTransition] = deque(maxlen=TRANSITION_LOG_LIMIT)

    @property
    def state(self) -> SubmissionState:
        """Current machine state."""
        return self._state

    @property
    def account(self) -> GasAccount:
        return self._account

    def get_transition_log(self) -> list[SubmissionTransition]:
        """Most recent transitions, oldest first."""
        return list(self._transition_log)

    async def sync_sequence(self) -> int:
        """Startup refresh. Raises QueryError: an unreadable gas account is fatal."""
        async with self._lock:
            await self._tracker.refresh()
            return self._tracker.current()

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def sweep_one(self, key: EscrowKey, force: bool = False) -> SweepOutcome:
        """
        Sweep one escrow.

        A zero balance without force is a no-op success: nothing is built
        and no sequence number is consumed.

        Raises:
            QueryError: Balance could not be read
            SubmissionError: The ledger rejected or did not confirm the sweep
        """
        try:
            balance = await self._ledger.get_escrow_balance(key.nft_address, key.fa_metadata_address)
        except QueryError as e:
            logger.error(f"[SWEEP] balance check failed {key}: {e}")
            raise

        if balance == 0 and not force:
            logger.debug(f"[SWEEP] Nothing due for {key}")
            return SweepOutcome(
                status=SweepStatus.SUCCESS,
                nft_addresses=[key.nft_address],
                fa_metadata_address=key.fa_metadata_address,
                balance=0,
            )

        try:
            sequence_number, committed = await self._submit(self._ledger.build_sweep_call(key))
        except SubmissionError as e:
            logger.error(f"[SWEEP] sweep failed {key} escrow_balance={balance}: {e}")
            raise

        logger.info(
            f"[SWEEP] swept nft={key.nft_address} fa_metadata={key.fa_metadata_address} "
            f"escrow_balance={balance}"
        )
        return SweepOutcome(
            status=SweepStatus.SUCCESS,
            nft_addresses=[key.nft_address],
            fa_metadata_address=key.fa_metadata_address,
            balance=balance,
            submitted=True,
            sequence_number=sequence_number,
            tx_hash=committed.hash,
        )

    async def sweep_batch(self, batch: Batch) -> SweepOutcome:
        """
        Sweep every escrow of a batch in one transaction.

        The ledger settles the batch atomically, so there is no partial outcome.

        Raises:
            SubmissionError: The ledger rejected or did not confirm the sweep
        """
        sequence_number, committed = await self._submit(self._ledger.build_sweep_many_call(batch))

        logger.info(f"[SWEEP] batch swept nfts={len(batch)}, total_balance={batch.total_balance}")
        return SweepOutcome(
            status=SweepStatus.SUCCESS,
            nft_addresses=batch.nft_addresses,
            fa_metadata_address=batch.fa_metadata_address,
            balance=batch.total_balance,
            submitted=True,
            sequence_number=sequence_number,
            tx_hash=committed.hash,
        )

    # =========================================================================
    # CRITICAL SECTION
    # =========================================================================

    async def _submit(self, call: EntryFunctionCall) -> tuple[int, LedgerTransaction]:
        async with self._lock:
            if self._needs_resync:
                # previous submission was abandoned mid-flight
                try:
                    await self._tracker.refresh()
                except QueryError as e:
                    raise SubmissionError(f"sequence resync failed: {e}") from e
                self._needs_resync = False
            sequence_number = self._tracker.current()
            try:
                self._transition_to(SubmissionState.BUILDING, "BUILD", sequence_number, call.function_id)
                txn = UnsignedTransaction(
                    sender=self._account.address,
                    sequence_number=sequence_number,
                    max_gas_amount=self._max_gas_amount,
                    gas_unit_price=self._gas_unit_price,
                    expiration_timestamp_secs=int(self._clock()) + self._timeout_secs,
                    payload=call.to_payload(),
                )
                message = await self._ledger.encode_submission(txn)
                signature = self._account.sign(message)
                self._transition_to(SubmissionState.SIGNED, "SIGN", sequence_number)

                pending = await self._ledger.submit_signed(txn, self._account.public_key_hex, signature)
                self._transition_to(SubmissionState.SUBMITTED, "SUBMIT", sequence_number, pending.hash)

                committed = await self._ledger.wait_for_transaction(
                    pending.hash,
                    txn.expiration_timestamp_secs,
                )
            except SubmissionError as e:
                self._transition_to(SubmissionState.REJECTED, "REJECT", sequence_number, str(e))
                await self._resync()
                raise
            except Exception as e:
                self._transition_to(SubmissionState.REJECTED, "ERROR", sequence_number, repr(e))
                await self._resync()
                raise SubmissionError(f"submission failed: {e!r}") from e
            else:
                self._transition_to(SubmissionState.CONFIRMED, "CONFIRM", sequence_number, committed.hash)
                self._tracker.advance()
                return sequence_number, committed
            finally:
                self._return_to_idle()

    async def _resync(self) -> None:
        """Best-effort: a failed refresh is logged and never masks the original error."""
        try:
            await self._tracker.refresh()
        except QueryError as e:
            logger.error(
                f"[SEQUENCE] sequence refresh failed for {short_address(self._account.address)}: {e}"
            )

    # =========================================================================
    # STATE HANDLING
    # =========================================================================

    def _transition_to(
        self,
        target: SubmissionState,
        trigger: str,
        sequence_number: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        if target not in self.VALID_TRANSITIONS.get(self._state, set()):
            raise InvalidTransition(f"{self._state.value} -> {target.value} not reachable")
        self._log_transition(self._state, target, trigger, sequence_number, detail)
        self._state = target

    def _return_to_idle(self) -> None:
        """Back to IDLE from a terminal state, or from anywhere after cancellation."""
        if self._state == SubmissionState.IDLE:
            return
        trigger = "DONE" if self._state in (SubmissionState.CONFIRMED, SubmissionState.REJECTED) else "ABANDONED"
        if trigger == "ABANDONED":
            self._needs_resync = True
        self._log_transition(self._state, SubmissionState.IDLE, trigger)
        self._state = SubmissionState.IDLE

    def _log_transition(
        self,
        previous: Optional[SubmissionState],
        current: SubmissionState,
        trigger: str,
        sequence_number: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        """Record state transition for audit trail."""
        self._transition_log.append(
            SubmissionTransition(
                previous_state=previous,
                current_state=current,
                trigger_event=trigger,
                sequence_number=sequence_number,
                detail=detail,
            )
        )
