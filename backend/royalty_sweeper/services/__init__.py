"""
Royalty Sweeper - Sweep Orchestrator

Scheduler loop → balance queries → batch planner → submission state machine
"""

from royalty_sweeper.services.batch_planner import plan_batches
from royalty_sweeper.services.gas_account import GasAccount, SequenceTracker
from royalty_sweeper.services.scheduler import CycleReport, SweepScheduler
from royalty_sweeper.services.submission import SubmissionStateMachine
from royalty_sweeper.services.watchlist import Watchlist, build_watchlist

__all__ = [
    "CycleReport",
    "GasAccount",
    "SequenceTracker",
    "SubmissionStateMachine",
    "SweepScheduler",
    "Watchlist",
    "build_watchlist",
    "plan_batches",
]
