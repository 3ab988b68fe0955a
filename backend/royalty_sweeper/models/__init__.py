from royalty_sweeper.models.schemas import (
    Batch,
    DueEscrow,
    EscrowKey,
    SubmissionState,
    SweepOutcome,
    SweepStatus,
)

__all__ = [
    "Batch",
    "DueEscrow",
    "EscrowKey",
    "SubmissionState",
    "SweepOutcome",
    "SweepStatus",
]
