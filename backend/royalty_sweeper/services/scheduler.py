"""
Royalty Sweeper - Scheduler Loop

One poll → plan → submit cycle per interval, until asked to stop.

Failure isolation:
    - A failed balance query drops that escrow from the current cycle only
    - A failed batch is logged (the state machine already resynced the
      sequence number) and the next batch still runs
    - Nothing short of cancellation ends the loop

Balance queries within a cycle run concurrently; submissions never do.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from royalty_sweeper.bridges.ledger import LedgerBridge
from royalty_sweeper.core.exceptions import QueryError, SubmissionError
from royalty_sweeper.models.schemas import Batch, DueEscrow, EscrowKey, SweepOutcome, SweepStatus
from royalty_sweeper.services.batch_planner import DEFAULT_BATCH_SIZE, plan_batches
from royalty_sweeper.services.submission import SubmissionStateMachine
from royalty_sweeper.services.watchlist import Watchlist

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What one poll cycle saw and did."""
    checked: int = 0
    failed_queries: list[str] = field(default_factory=list)
    due: list[DueEscrow] = field(default_factory=list)
    outcomes: list[SweepOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


class SweepScheduler:
    """Drives the submission state machine from a fixed watchlist."""

    def __init__(
        self,
        machine: SubmissionStateMachine,
        ledger: LedgerBridge,
        watchlist: Watchlist,
        interval_secs: float = 5,
        max_batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrent_queries: int = 8,
        recheck_before_batch: bool = True,
    ) -> None:
        self._machine = machine
        self._ledger = ledger
        self._watchlist = watchlist
        self._interval_secs = interval_secs
        self._max_batch_size = max_batch_size
        self._max_concurrent_queries = max(1, max_concurrent_queries)
        self._recheck_before_batch = recheck_before_batch
        self._stop = asyncio.Event()
        self.cycles = 0

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Interrupts the interval sleep; a submission in flight still finishes."""
        if not self._stop.is_set():
            logger.info("[SCHEDULER] Stop requested")
        self._stop.set()

    async def run(self) -> None:
        logger.info(
            f"[SCHEDULER] Watching {len(self._watchlist)} escrow(s) "
            f"fa_metadata={self._watchlist.fa_metadata_address} "
            f"interval={self._interval_secs}s batch_size={self._max_batch_size}"
        )
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception(f"[SCHEDULER] Cycle {self.cycles} failed: {e}")
            await self._sleep()
        logger.info(f"[SCHEDULER] Stopped after {self.cycles} cycle(s)")

    async def run_cycle(self) -> CycleReport:
        """Poll every watched escrow once and sweep what is due."""
        self.cycles += 1
        due, failed = await self._collect_due(self._watchlist.keys)
        report = CycleReport(checked=len(self._watchlist), failed_queries=failed, due=due)

        if not due:
            return report

        batches = plan_batches(due, self._max_batch_size)
        logger.info(f"[SCHEDULER] {len(due)} escrow(s) due, {len(batches)} batch(es)")

        for idx, batch in enumerate(batches):
            if self._stop.is_set():
                logger.info(f"[SCHEDULER] Skipping {len(batches) - idx} remaining batch(es)")
                break
            outcome = await self._sweep(batch)
            if outcome is not None:
                report.outcomes.append(outcome)
        return report

    # =========================================================================
    # POLLING
    # =========================================================================

    async def _collect_due(self, keys: Sequence[EscrowKey]) -> tuple[list[DueEscrow], list[str]]:
        """Concurrent balance queries, fanned back in to input order."""
        semaphore = asyncio.Semaphore(self._max_concurrent_queries)

        async def check(key: EscrowKey) -> Optional[int]:
            async with semaphore:
                return await self._query_balance(key)

        balances = await asyncio.gather(*(check(key) for key in keys))

        due = []
        failed = []
        for key, balance in zip(keys, balances):
            if balance is None:
                failed.append(key.nft_address)
            elif balance > 0:
                due.append(DueEscrow(key=key, observed_balance=balance))
        return due, failed

    async def _query_balance(self, key: EscrowKey) -> Optional[int]:
        try:
            return await self._ledger.get_escrow_balance(key.nft_address, key.fa_metadata_address)
        except QueryError as e:
            logger.warning(f"[SCHEDULER] balance check failed for {key.nft_address}: {e}")
        except Exception as e:
            logger.exception(f"[SCHEDULER] balance check crashed for {key.nft_address}: {e!r}")
        return None

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def _sweep(self, batch: Batch) -> Optional[SweepOutcome]:
        if self._recheck_before_batch:
            batch = await self._recheck(batch)
            if batch is None:
                return None

        try:
            return await self._machine.sweep_batch(batch)
        except SubmissionError as e:
            logger.error(
                f"[SWEEP] batch sweep failed (nfts={len(batch)}, total_balance={batch.total_balance}): "
                f"{e} [{', '.join(batch.nft_addresses)}]"
            )
            reason = str(e)
        except Exception as e:
            logger.exception(
                f"[SWEEP] batch sweep crashed (nfts={len(batch)}): {e!r} [{', '.join(batch.nft_addresses)}]"
            )
            reason = repr(e)

        return SweepOutcome(
            status=SweepStatus.FAILURE,
            nft_addresses=batch.nft_addresses,
            fa_metadata_address=batch.fa_metadata_address,
            balance=batch.total_balance,
            submitted=True,
            reason=reason,
        )

    async def _recheck(self, batch: Batch) -> Optional[Batch]:
        """Drop escrows drained (or unreadable) since the poll. None if nothing is left."""
        still_due, _ = await self._collect_due(batch.keys)
        dropped = len(batch) - len(still_due)
        if dropped:
            logger.info(f"[SCHEDULER] Dropped {dropped} escrow(s) no longer due before submission")
        if not still_due:
            return None
        return Batch(
            keys=tuple(d.key for d in still_due),
            total_balance=sum(d.observed_balance for d in still_due),
        )

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._interval_secs)
        except asyncio.TimeoutError:
            pass
