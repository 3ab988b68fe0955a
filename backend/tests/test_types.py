"""Canonical address and u64 types."""

import pytest
from pydantic import BaseModel, ValidationError

from royalty_sweeper.core.types import U64, Address, parse_address, short_address, to_u64

FULL = "0x87e87b2f6ca01a0a02d68e18305f700435fdb76e445db9d24c84a121f2d5cd2c"


class TestParseAddress:
    """Address spellings collapse to one canonical form."""

    def test_full_address_is_lowercased(self):
        assert parse_address(FULL.upper().replace("0X", "0x")) == FULL

    def test_short_address_is_left_padded(self):
        assert parse_address("0x1") == "0x" + "0" * 63 + "1"

    def test_prefix_is_optional(self):
        assert parse_address(FULL[2:]) == FULL

    def test_whitespace_is_stripped(self):
        assert parse_address(f"  {FULL}\t") == FULL

    @pytest.mark.parametrize("bad", ["", "0x", "0xzz", "0x" + "1" * 65, "0x1_0", "+1"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            parse_address(bad)

    def test_rejects_non_string(self):
        with pytest.raises(ValueError):
            parse_address(42)

    def test_ordering_matches_byte_order(self):
        assert parse_address("0x2") < parse_address("0x10") < parse_address("0xff")

    def test_short_address_for_logs(self):
        assert short_address(FULL) == "0x87e8...cd2c"
        assert short_address("0x1234") == "0x1234"


class TestU64:
    """u64 accepts ints and decimal strings only."""

    class Holder(BaseModel):
        value: U64
        address: Address

    def test_decimal_string_is_parsed(self):
        holder = self.Holder(value="18446744073709551615", address="0x1")
        assert holder.value == 2**64 - 1

    def test_serializes_as_string(self):
        holder = self.Holder(value=7, address="0x1")
        assert holder.model_dump(mode="json") == {"value": "7", "address": "0x" + "0" * 63 + "1"}

    @pytest.mark.parametrize("bad", [-1, 2**64, 1.5, True, "ten"])
    def test_rejects_out_of_range_and_wrong_types(self, bad):
        with pytest.raises(ValidationError):
            self.Holder(value=bad, address="0x1")

    def test_plain_function_form(self):
        assert to_u64("12") == 12
        with pytest.raises(ValueError):
            to_u64(None)
