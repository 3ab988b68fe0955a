"""Partition due escrows into single-transaction batches."""

from typing import Sequence

from royalty_sweeper.models.schemas import Batch, DueEscrow

DEFAULT_BATCH_SIZE = 20


def plan_batches(due: Sequence[DueEscrow], max_batch_size: int = DEFAULT_BATCH_SIZE) -> list[Batch]:
    """
    Contiguous groups of at most max_batch_size, in input order.

    A size below 1 is clamped to 1. A new group also starts whenever the
    fa_metadata address changes.
    """
    size = max(1, max_batch_size)
    batches: list[Batch] = []
    group: list[DueEscrow] = []

    for escrow in due:
        if group and (
            len(group) >= size
            or escrow.key.fa_metadata_address != group[0].key.fa_metadata_address
        ):
            batches.append(_to_batch(group))
            group = []
        group.append(escrow)

    if group:
        batches.append(_to_batch(group))
    return batches


def _to_batch(group: list[DueEscrow]) -> Batch:
    return Batch(
        keys=tuple(d.key for d in group),
        total_balance=sum(d.observed_balance for d in group),
    )
