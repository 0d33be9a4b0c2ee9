import calendar
from datetime import datetime, timezone, timedelta
from decimal import Decimal

import pytest
from cryptography.exceptions import InvalidTag
from hypothesis import given, strategies as st

from giving.core.clock import add_period, to_naive_utc
from giving.core.money import to_money, has_sub_cent, to_minor_units
from giving.core.security import (
    encrypt, encrypt_payment_token, decrypt_payment_token, mask_token,
)


class TestAddPeriod:
    @pytest.mark.parametrize("start,expected", [
        (datetime(2024, 1, 31), datetime(2024, 2, 29)),
        (datetime(2023, 1, 31), datetime(2023, 2, 28)),
        (datetime(2024, 3, 31), datetime(2024, 4, 30)),
        (datetime(2024, 12, 15, 8, 30), datetime(2025, 1, 15, 8, 30)),
    ])
    def test_monthly(self, start, expected):
        assert add_period(start, "monthly") == expected

    def test_annual_from_leap_day(self):
        assert add_period(datetime(2024, 2, 29), "annually") == datetime(2025, 2, 28)

    def test_unknown_frequency(self):
        with pytest.raises(ValueError):
            add_period(datetime(2024, 1, 1), "weekly")

    @given(st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1)))
    def test_monthly_lands_on_valid_day_of_next_month(self, start):
        result = add_period(start, "monthly")

        assert result > start
        expected_month = start.month % 12 + 1
        assert result.month == expected_month
        last_day = calendar.monthrange(result.year, result.month)[1]
        assert result.day == min(start.day, last_day)
        assert result.time() == start.time()


def test_to_naive_utc():
    aware = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=9)))
    assert to_naive_utc(aware) == datetime(2024, 1, 1, 0, 0)
    assert to_naive_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1)
    assert to_naive_utc(None) is None


class TestMoney:
    def test_to_money_quantizes(self):
        assert to_money("25") == Decimal("25.00")
        assert to_money(25.1) == Decimal("25.10")
        assert to_money(Decimal("1.005")) == Decimal("1.01")

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", None])
    def test_to_money_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            to_money(value)

    def test_has_sub_cent(self):
        assert has_sub_cent("25.001") is True
        assert has_sub_cent(Decimal("25.10")) is False

    def test_minor_units(self):
        assert to_minor_units(Decimal("51.75")) == 5175
        assert to_minor_units(Decimal("25")) == 2500


class TestTokenEncryption:
    def test_round_trip(self):
        enc = encrypt_payment_token("pm_card_visa")
        assert enc != "pm_card_visa"
        assert decrypt_payment_token(enc) == "pm_card_visa"

    def test_nonce_makes_ciphertext_unique(self):
        assert encrypt_payment_token("pm_1") != encrypt_payment_token("pm_1")

    def test_api_key_ciphertext_cannot_be_read_as_token(self):
        with pytest.raises(InvalidTag):
            decrypt_payment_token(encrypt("sk_test_123"))

    @pytest.mark.parametrize("token,masked", [
        ("pm_card_visa", "********visa"),
        ("abc", "***"),
        ("", ""),
    ])
    def test_mask(self, token, masked):
        assert mask_token(token) == masked


def test_json_formatter_includes_context():
    import json
    import logging
    from giving.core.logging import JSONFormatter

    record = logging.LogRecord("giving.test", logging.INFO, __file__, 1, "cycle done", None, None)
    record.worker_id = "scheduler:host:1"
    record.extra_data = {"amount": Decimal("25.00")}

    entry = json.loads(JSONFormatter("scheduler").format(record))

    assert entry["component"] == "scheduler"
    assert entry["worker_id"] == "scheduler:host:1"
    assert entry["data"] == {"amount": "25.00"}
    assert "recurring_donation_id" not in entry


def _request(query_string=b"", headers=()):
    from starlette.requests import Request

    return Request({
        "type": "http",
        "method": "POST",
        "path": "/api/recurring-donations",
        "query_string": query_string,
        "headers": list(headers),
        "client": ("10.0.0.5", 50000),
    })


class TestRateLimitKey:
    def test_donor_requests_share_one_bucket(self):
        from giving.core.rate_limit import rate_limit_key

        first = _request(b"user_email=Donor@Example.com")
        second = _request(b"user_email=donor@example.com", headers=[(b"x-forwarded-for", b"192.0.2.1")])

        assert rate_limit_key(first) == rate_limit_key(second) == "donor:donor@example.com"

    def test_falls_back_to_forwarded_ip(self):
        from giving.core.rate_limit import rate_limit_key

        request = _request(headers=[(b"x-forwarded-for", b"192.0.2.1, 10.0.0.1")])

        assert rate_limit_key(request) == "ip:192.0.2.1"

    def test_falls_back_to_peer_address(self):
        from giving.core.rate_limit import rate_limit_key

        assert rate_limit_key(_request()) == "ip:10.0.0.5"
