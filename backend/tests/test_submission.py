"""
Submission state machine tests.

The mock ledger enforces sequence ordering exactly like a node would, so
every test that submits twice also proves the local counter stayed in step.
"""

import asyncio

import pytest

from royalty_sweeper.core.exceptions import QueryError, SubmissionError
from royalty_sweeper.core.types import parse_address
from royalty_sweeper.models.schemas import Batch, EscrowKey, SubmissionState, SweepStatus
from royalty_sweeper.services.mocks.ledger import LedgerMock
from royalty_sweeper.services.submission import InvalidTransition, SubmissionStateMachine

FAR_FUTURE = 4_000_000_000
FA = "0xfa"
NFT = "0xa1"


def _triggers(machine: SubmissionStateMachine) -> list[str]:
    return [t.trigger_event for t in machine.get_transition_log()]


class SlowLedger(LedgerMock):
    """Yields to the event loop mid-submission so interleavings are possible."""

    async def submit_signed(self, txn, public_key_hex, signature):
        await asyncio.sleep(0.01)
        return await super().submit_signed(txn, public_key_hex, signature)


class BrokenEncoderLedger(LedgerMock):
    async def encode_submission(self, txn):
        raise RuntimeError("encoder exploded")


class HangingWaitLedger(LedgerMock):
    """First wait never returns; later waits behave normally."""

    def __init__(self) -> None:
        super().__init__()
        self.hang = True

    async def wait_for_transaction(self, tx_hash, expiration_timestamp_secs):
        if self.hang:
            self.hang = False
            await asyncio.Event().wait()
        return await super().wait_for_transaction(tx_hash, expiration_timestamp_secs)


class TestSweepOne:
    """Single escrow sweeps."""

    @pytest.mark.asyncio
    async def test_zero_balance_is_noop(self, ledger, machine):
        outcome = await machine.sweep_one(EscrowKey(NFT, FA))

        assert outcome.status == SweepStatus.SUCCESS
        assert outcome.submitted is False
        assert outcome.balance == 0
        assert ledger.submissions == []
        assert machine.get_transition_log() == []

    @pytest.mark.asyncio
    async def test_force_submits_on_zero_balance(self, ledger, machine):
        outcome = await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        assert outcome.submitted is True
        assert outcome.sequence_number == 0
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_transaction_fields(self, ledger, account):
        machine = SubmissionStateMachine(ledger, account, clock=lambda: FAR_FUTURE)
        ledger.set_balance(NFT, FA, 250)

        outcome = await machine.sweep_one(EscrowKey(NFT, FA))

        txn = ledger.submissions[0]
        assert txn.sender == account.address
        assert txn.max_gas_amount == 5_000
        assert txn.gas_unit_price == 100
        assert txn.expiration_timestamp_secs == FAR_FUTURE + 30
        assert txn.payload["function"] == f"{ledger.module_address}::vault_ops::sweep_royalty_to_core_vault"
        assert txn.payload["arguments"] == [parse_address(NFT), parse_address(FA)]
        assert outcome.balance == 250
        assert outcome.tx_hash is not None
        assert ledger.balance_of(NFT, FA) == 0

    @pytest.mark.asyncio
    async def test_balance_query_error_propagates(self, ledger, machine):
        ledger.fail_balance_query(NFT)

        with pytest.raises(QueryError):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)
        assert ledger.submissions == []
        assert machine.state == SubmissionState.IDLE


class TestSequenceNumbers:
    """The local counter tracks the ledger's."""

    @pytest.mark.asyncio
    async def test_consecutive_sweeps_are_monotonic(self, ledger, account, machine):
        ledger.set_sequence(account.address, 41)
        assert await machine.sync_sequence() == 41

        numbers = []
        for idx in range(5):
            outcome = await machine.sweep_one(EscrowKey(hex(idx + 1), FA), force=True)
            numbers.append(outcome.sequence_number)

        assert numbers == [41, 42, 43, 44, 45]
        assert ledger.sequence_of(account.address) == 46

    @pytest.mark.asyncio
    async def test_failure_refreshes_exactly_once(self, ledger, machine):
        await machine.sync_sequence()
        ledger.fail_next_submit("connection reset")

        with pytest.raises(SubmissionError, match="connection reset"):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        assert len(ledger.sequence_queries) == 2
        assert machine.state == SubmissionState.IDLE

    @pytest.mark.asyncio
    async def test_stale_sequence_recovers_on_next_sweep(self, ledger, account, machine):
        ledger.set_sequence(account.address, 9)

        with pytest.raises(SubmissionError) as exc:
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)
        assert exc.value.vm_status == "SEQUENCE_NUMBER_TOO_OLD"

        outcome = await machine.sweep_one(EscrowKey(NFT, FA), force=True)
        assert outcome.sequence_number == 9
        assert [t.sequence_number for t in ledger.submissions] == [0, 9]

    @pytest.mark.asyncio
    async def test_committed_but_unconfirmed_does_not_reuse_sequence(self, ledger, machine):
        ledger.fail_next_wait()

        with pytest.raises(SubmissionError):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        outcome = await machine.sweep_one(EscrowKey("0xa2", FA), force=True)
        assert outcome.sequence_number == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_original_error(self, ledger, machine):
        ledger.fail_next_submit("node unavailable")
        ledger.fail_sequence_queries(1)

        with pytest.raises(SubmissionError, match="node unavailable"):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        outcome = await machine.sweep_one(EscrowKey(NFT, FA), force=True)
        assert outcome.sequence_number == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_are_serialized(self, account):
        ledger = SlowLedger()
        machine = SubmissionStateMachine(ledger, account)

        first, second = await asyncio.gather(
            machine.sweep_one(EscrowKey("0x1", FA), force=True),
            machine.sweep_one(EscrowKey("0x2", FA), force=True),
        )

        assert sorted([first.sequence_number, second.sequence_number]) == [0, 1]
        assert [t.sequence_number for t in ledger.submissions] == [0, 1]

    @pytest.mark.asyncio
    async def test_cancelled_submission_forces_resync(self, account):
        ledger = HangingWaitLedger()
        machine = SubmissionStateMachine(ledger, account)

        task = asyncio.create_task(machine.sweep_one(EscrowKey(NFT, FA), force=True))
        while machine.state != SubmissionState.SUBMITTED:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert machine.state == SubmissionState.IDLE
        assert _triggers(machine)[-1] == "ABANDONED"

        outcome = await machine.sweep_one(EscrowKey("0xa2", FA), force=True)
        assert outcome.sequence_number == 1
        assert ledger.sequence_queries == [account.address]


class TestTransitions:
    """Audit trail of the machine."""

    @pytest.mark.asyncio
    async def test_successful_submission_path(self, machine):
        await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        assert _triggers(machine) == ["BUILD", "SIGN", "SUBMIT", "CONFIRM", "DONE"]
        assert machine.state == SubmissionState.IDLE

    @pytest.mark.asyncio
    async def test_rejected_submission_path(self, ledger, machine):
        ledger.fail_next_submit()

        with pytest.raises(SubmissionError):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        log = machine.get_transition_log()
        assert [t.trigger_event for t in log] == ["BUILD", "SIGN", "REJECT", "DONE"]
        assert log[2].current_state == SubmissionState.REJECTED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, account):
        machine = SubmissionStateMachine(BrokenEncoderLedger(), account)

        with pytest.raises(SubmissionError, match="encoder exploded"):
            await machine.sweep_one(EscrowKey(NFT, FA), force=True)

        assert _triggers(machine) == ["BUILD", "ERROR", "DONE"]
        assert machine.state == SubmissionState.IDLE

    def test_unreachable_state_is_refused(self, machine):
        with pytest.raises(InvalidTransition):
            machine._transition_to(SubmissionState.CONFIRMED, "CONFIRM")
        assert machine.state == SubmissionState.IDLE
        assert machine.get_transition_log() == []


class TestSweepBatch:
    """Batch sweeps settle in one transaction."""

    @pytest.mark.asyncio
    async def test_batch_is_one_transaction(self, ledger, machine):
        keys = tuple(EscrowKey(hex(n), FA) for n in (1, 2, 3))
        for n, key in enumerate(keys, start=1):
            ledger.set_balance(key.nft_address, FA, n * 100)

        outcome = await machine.sweep_batch(Batch(keys=keys, total_balance=600))

        assert len(ledger.submissions) == 1
        payload = ledger.submissions[0].payload
        assert payload["function"].endswith("::vault_ops::sweep_royalty_to_core_vault_many")
        assert payload["arguments"] == [[k.nft_address for k in keys], parse_address(FA)]
        assert all(ledger.balance_of(k.nft_address, FA) == 0 for k in keys)
        assert outcome.balance == 600
        assert outcome.nft_addresses == [k.nft_address for k in keys]

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_every_escrow_untouched(self, ledger, machine):
        keys = tuple(EscrowKey(hex(n), FA) for n in (1, 2))
        for key in keys:
            ledger.set_balance(key.nft_address, FA, 10)
        ledger.fail_next_submit()

        with pytest.raises(SubmissionError):
            await machine.sweep_batch(Batch(keys=keys, total_balance=20))

        assert all(ledger.balance_of(k.nft_address, FA) == 10 for k in keys)
