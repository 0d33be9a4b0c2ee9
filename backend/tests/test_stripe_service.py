from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from giving.services import stripe_service, settlement_store
from giving.services.stripe_service import StripeGateway, transaction_details


@pytest.fixture
def intents(monkeypatch):
    """PaymentIntent.create の呼び出しを記録し、指定の結果を返す"""
    calls = []
    state = {"response": SimpleNamespace(id="pi_123", status="succeeded"), "error": None}

    def fake_create(**kwargs):
        calls.append(kwargs)
        if state["error"]:
            raise state["error"]
        return state["response"]

    monkeypatch.setattr(stripe_service, "get_stripe_secret_key", lambda: "sk_test_dummy")
    monkeypatch.setattr(stripe_service, "get_statement_descriptor", lambda: None)
    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    return SimpleNamespace(calls=calls, state=state)


def test_charge_sends_minor_units_with_idempotency_key(intents):
    result = StripeGateway().charge(
        Decimal("51.75"), "USD", "cus_42/pm_card_visa", "recurring-1-20240101000000-0",
        "Recurring donation #1 (monthly)", customer_email="donor@example.com",
    )

    assert result.success is True
    assert result.transaction_id == "pi_123"
    params = intents.calls[0]
    assert params["amount"] == 5175
    assert params["currency"] == "usd"
    assert params["customer"] == "cus_42"
    assert params["payment_method"] == "pm_card_visa"
    assert params["idempotency_key"] == "recurring-1-20240101000000-0"
    assert params["off_session"] is True
    assert params["confirm"] is True
    assert params["receipt_email"] == "donor@example.com"


def test_statement_descriptor_is_sent_when_configured(intents, monkeypatch):
    monkeypatch.setattr(stripe_service, "get_statement_descriptor", lambda: "GIVING MONTHLY")

    StripeGateway().charge(Decimal("25.00"), "USD", "pm_card_visa", "ref", "desc")

    assert intents.calls[0]["statement_descriptor_suffix"] == "GIVING MONTHLY"


def test_bare_payment_method_token(intents):
    StripeGateway().charge(Decimal("25.00"), "USD", "pm_card_visa", "ref", "desc")

    assert "customer" not in intents.calls[0]
    assert intents.calls[0]["payment_method"] == "pm_card_visa"


def test_card_error_becomes_failed_result(intents):
    intents.state["error"] = stripe.CardError("Your card was declined.", None, "card_declined")

    result = StripeGateway().charge(Decimal("25.00"), "USD", "pm_card_chargeDeclined", "ref", "desc")

    assert result.success is False
    assert result.error_message


def test_api_error_becomes_failed_result(intents):
    intents.state["error"] = stripe.APIConnectionError("network down")

    result = StripeGateway().charge(Decimal("25.00"), "USD", "pm_card_visa", "ref", "desc")

    assert result.success is False
    assert result.error_message


def test_incomplete_intent_is_failure(intents):
    intents.state["response"] = SimpleNamespace(id="pi_999", status="requires_action")

    result = StripeGateway().charge(Decimal("25.00"), "USD", "pm_card_visa", "ref", "desc")

    assert result.success is False
    assert result.transaction_id == "pi_999"
    assert "requires_action" in result.error_message


def test_transaction_details_maps_to_ledger_id(db, create_donation):
    donation = create_donation()
    txn = settlement_store.add_payment_transaction(
        db, donation.id, "ref-1", Decimal("25.00"), "USD", succeeded=True, gateway_transaction_id="pi_abc",
    )
    db.commit()

    assert transaction_details(db, "pi_abc") == txn.id
    assert transaction_details(db, "pi_missing") is None
    assert transaction_details(db, "") is None
