"""Shared fixtures: an in-memory ledger and a gas account with a fixed key."""

import pytest

from royalty_sweeper.services.gas_account import GasAccount
from royalty_sweeper.services.mocks.ledger import LedgerMock
from royalty_sweeper.services.submission import SubmissionStateMachine

GAS_PRIVATE_KEY = "0x" + "4f" * 32


@pytest.fixture
def ledger() -> LedgerMock:
    return LedgerMock()


@pytest.fixture
def account() -> GasAccount:
    return GasAccount.from_private_key(GAS_PRIVATE_KEY)


@pytest.fixture
def machine(ledger: LedgerMock, account: GasAccount) -> SubmissionStateMachine:
    return SubmissionStateMachine(ledger, account)
