"""
Tests for money, code, time and validation helpers.
"""
import re
from datetime import datetime
from decimal import Decimal

import pytest

from wallet_ledger.utils.codes import generate_redeem_code, generate_reference, to_base36
from wallet_ledger.utils.hashing import hash_pin, verify_pin_hash
from wallet_ledger.utils.money import share_of, to_money
from wallet_ledger.utils.timeutils import parse_gateway_timestamp, start_of_day, start_of_month
from wallet_ledger.utils.validators import missing_fields, normalize_code, normalize_phone, validate_pin


class TestMoney:

    def test_to_money_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(1000) == Decimal("1000.00")
        assert to_money(0.1) == Decimal("0.10")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", None])
    def test_to_money_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            to_money(value)

    def test_partner_share(self):
        assert share_of(Decimal("1000.00"), Decimal("0.20")) == Decimal("200.00")
        assert share_of(Decimal("333.33"), Decimal("0.20")) == Decimal("66.67")


class TestCodes:

    def test_redeem_code_format(self):
        for _ in range(50):
            assert re.fullmatch(r"R-[1-9]\d{5}", generate_redeem_code())

    def test_reference_format(self):
        ref = generate_reference(now_ms=1_700_000_000_000)
        assert re.fullmatch(r"WD-[0-9A-Z]+-[0-9A-Z]{6}", ref)
        assert ref.split("-")[1] == to_base36(1_700_000_000_000)

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36) == "10"


class TestTime:

    def test_start_of_day_in_nairobi(self):
        # 00:30 on the 16th in Nairobi
        assert start_of_day("Africa/Nairobi", datetime(2026, 3, 15, 21, 30)) == datetime(2026, 3, 15, 21, 0)

    def test_start_of_month_in_nairobi(self):
        assert start_of_month("Africa/Nairobi", datetime(2026, 4, 10, 8, 0)) == datetime(2026, 3, 31, 21, 0)

    def test_parse_gateway_timestamp(self):
        assert parse_gateway_timestamp(20260315120000, "Africa/Nairobi") == datetime(2026, 3, 15, 9, 0)
        assert parse_gateway_timestamp("2026-03-15T12:00:00Z", "Africa/Nairobi") == datetime(2026, 3, 15, 12, 0)
        assert parse_gateway_timestamp("yesterday", "Africa/Nairobi") is None
        assert parse_gateway_timestamp(None, "Africa/Nairobi") is None


class TestValidators:

    def test_normalize_code(self):
        assert normalize_code("  july200 ") == "JULY200"
        assert normalize_code(None) == ""

    @pytest.mark.parametrize("raw,expected", [
        ("0712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("0110 123 456", "254110123456"),
        ("712345678", "254712345678"),
    ])
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_validate_pin(self):
        assert validate_pin("0420") is True
        assert validate_pin("042") is False
        assert validate_pin(None) is False

    def test_missing_fields(self):
        assert missing_fields({"a": "x", "b": " ", "c": None}, ["a", "b", "c", "d"]) == ["b", "c", "d"]


class TestPinHashing:

    def test_round_trip(self):
        stored = hash_pin("1234", 1000)
        assert verify_pin_hash("1234", stored) is True
        assert verify_pin_hash("4321", stored) is False

    def test_salted(self):
        assert hash_pin("1234", 1000) != hash_pin("1234", 1000)

    def test_malformed_hash(self):
        assert verify_pin_hash("1234", "garbage") is False
