"""
Royalty Sweeper - Canonical Ledger Types
========================================

RULE: Addresses are compared and ordered by their 32 bytes, never by
whatever spelling the operator typed.

Address:  "0x" + 64 lowercase hex chars
        - Short forms ("0x1") are left-padded with zeros
        - "0x" prefix is optional on input
        - Equality and ordering of the canonical string match byte order

U64:    int in [0, 2**64 - 1]
        - The ledger's REST API serializes u64 as a decimal string
        - Accepts int or decimal string, rejects floats and bools

This module is the SINGLE SOURCE OF TRUTH for ledger scalar types.
"""

from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer, WithJsonSchema


# =============================================================================
# ACCOUNT ADDRESS
# =============================================================================

ADDRESS_LENGTH = 32
U64_MAX = 2**64 - 1


def parse_address(value: Any) -> str:
    """
    Parse and canonicalize a ledger account address.

    Accepts:
        - "0x"-prefixed or bare hex, 1..64 hex digits
        - surrounding whitespace

    Raises:
        ValueError: If the value is not a valid address
    """
    if not isinstance(value, str):
        raise ValueError(f"Address must be a string, got: {type(value).__name__}")

    raw = value.strip()
    digits = raw[2:] if raw[:2].lower() == "0x" else raw

    if not digits:
        raise ValueError(f"Empty address: {value!r}")
    if len(digits) > ADDRESS_LENGTH * 2:
        raise ValueError(f"Address too long ({len(digits)} hex digits): {value!r}")
    if not all(c in "0123456789abcdefABCDEF" for c in digits):
        raise ValueError(f"Address is not hex: {value!r}")

    return "0x" + digits.lower().rjust(ADDRESS_LENGTH * 2, "0")


def short_address(address: str) -> str:
    """Format an address for log lines (0x87e8...cd2c)."""
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


# Address type: canonical 0x-prefixed 64-hex string
Address = Annotated[
    str,
    BeforeValidator(parse_address),
    WithJsonSchema({"type": "string", "description": "Ledger account address (0x + 64 hex)"}),
]


# =============================================================================
# U64
# =============================================================================

def _validate_u64(v: Any) -> int:
    """
    Validate an unsigned 64-bit integer.

    Accepts:
        - int: Range-checked
        - str: Parsed as base-10 integer (REST API encoding)
        - float / bool: REJECTED
    """
    if isinstance(v, (bool, float)):
        raise ValueError(f"u64 must be int or decimal string. Got: {v!r}")

    if isinstance(v, str):
        try:
            v = int(v, 10)
        except ValueError:
            raise ValueError(f"Invalid u64 string: {v!r}")

    if not isinstance(v, int):
        raise ValueError(f"Invalid u64 type: {type(v)}")

    if v < 0 or v > U64_MAX:
        raise ValueError(f"u64 out of range: {v}")
    return v


def _serialize_u64(v: int) -> str:
    """Serialize u64 as decimal string (matches the REST API)."""
    return str(v)


U64 = Annotated[
    int,
    BeforeValidator(_validate_u64),
    PlainSerializer(_serialize_u64),
    WithJsonSchema({"type": "string", "description": "Unsigned 64-bit integer as decimal string"}),
]


def to_u64(value: Any) -> int:
    """Plain-function form of the U64 validator for call sites outside models."""
    return _validate_u64(value)
