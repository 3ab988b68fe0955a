"""
Royalty Sweeper - Domain & Wire Schemas

Cycle-scoped values (EscrowKey, DueEscrow, Batch) are frozen dataclasses:
they are hashed, sorted and discarded every poll cycle.
Reporting and ledger wire objects are Pydantic models.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from royalty_sweeper.core.types import U64, Address, parse_address


# =============================================================================
# ESCROWS
# =============================================================================

@dataclass(frozen=True, order=True)
class EscrowKey:
    """One escrow account: an NFT object and one fungible-asset type."""
    nft_address: str
    fa_metadata_address: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "nft_address", parse_address(self.nft_address))
        object.__setattr__(self, "fa_metadata_address", parse_address(self.fa_metadata_address))

    def __str__(self) -> str:
        return f"nft={self.nft_address} fa_metadata={self.fa_metadata_address}"


@dataclass(frozen=True)
class DueEscrow:
    """An escrow observed with a balance in the current cycle. Never cached."""
    key: EscrowKey
    observed_balance: int


@dataclass(frozen=True)
class Batch:
    """Escrows settled by one transaction. total_balance is informational only."""
    keys: tuple[EscrowKey, ...]
    total_balance: int = 0

    def __post_init__(self) -> None:
        if not self.keys:
            raise ValueError("Batch must contain at least one escrow")
        metadata = {k.fa_metadata_address for k in self.keys}
        if len(metadata) != 1:
            raise ValueError(f"Batch mixes fa_metadata addresses: {sorted(metadata)}")

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def fa_metadata_address(self) -> str:
        return self.keys[0].fa_metadata_address

    @property
    def nft_addresses(self) -> list[str]:
        return [k.nft_address for k in self.keys]


# =============================================================================
# OUTCOMES
# =============================================================================

class SweepStatus(str, Enum):
    """Result of one sweep attempt."""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class SweepOutcome(BaseModel):
    """Report of a single-escrow or batch sweep. Never persisted."""
    status: SweepStatus
    nft_addresses: list[str]
    fa_metadata_address: str
    balance: int = 0
    submitted: bool = False
    sequence_number: Optional[int] = None
    tx_hash: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SweepStatus.SUCCESS


# =============================================================================
# SUBMISSION STATE MACHINE
# =============================================================================

class SubmissionState(str, Enum):
    """Authorized submission states."""
    IDLE = "IDLE"
    BUILDING = "BUILDING"
    SIGNED = "SIGNED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"


class SubmissionTransition(BaseModel):
    """State transition record."""
    previous_state: Optional[SubmissionState] = None
    current_state: SubmissionState
    trigger_event: str
    sequence_number: Optional[int] = None
    detail: Optional[str] = None


# =============================================================================
# LEDGER WIRE OBJECTS
# =============================================================================

class EntryFunctionCall(BaseModel):
    """Entry function invocation, JSON-encoded for the REST API."""
    module_address: Address
    module_name: str
    function_name: str
    type_arguments: list[str] = Field(default_factory=list)
    arguments: list[Any] = Field(default_factory=list)

    @property
    def function_id(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.function_name}"

    def to_payload(self) -> dict:
        return {
            "type": "entry_function_payload",
            "function": self.function_id,
            "type_arguments": list(self.type_arguments),
            "arguments": list(self.arguments),
        }


class UnsignedTransaction(BaseModel):
    """Transaction fields stamped before signing."""
    sender: Address
    sequence_number: U64
    max_gas_amount: U64
    gas_unit_price: U64
    expiration_timestamp_secs: U64
    payload: dict

    def to_request(self) -> dict:
        return self.model_dump(mode="json")


class LedgerTransaction(BaseModel):
    """Subset of a transaction as returned by the REST API."""
    model_config = ConfigDict(extra="ignore")

    hash: str
    type: str = "pending_transaction"
    success: Optional[bool] = None
    vm_status: Optional[str] = None
    version: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.type == "pending_transaction"
