from datetime import datetime, timezone, timedelta
from decimal import Decimal

import pytest

from giving.core.exceptions import ValidationError, NotFound, InvalidStateTransition, AlreadyTerminal
from giving.core.security import decrypt_payment_token
from giving.models.system_log import SystemLog
from giving.services import recurring_donation_service as service
from giving.services import subscription_store

NOW = datetime(2024, 1, 10, 12, 0)


class TestCreate:
    def test_create_sets_initial_schedule(self, create_donation):
        donation = create_donation()

        assert donation.id is not None
        assert donation.status == "active"
        assert donation.next_due_date == datetime(2024, 1, 1)
        assert donation.successful_charge_count == 0
        assert donation.failed_attempt_count == 0
        assert donation.currency == "USD"
        assert donation.created_by == "tester"
        assert donation.modified_by == "tester"

    def test_token_is_stored_encrypted(self, create_donation):
        donation = create_donation(payment_token="cus_1/pm_card_visa")

        assert donation.payment_token_enc != "cus_1/pm_card_visa"
        assert decrypt_payment_token(donation.payment_token_enc) == "cus_1/pm_card_visa"

    def test_exact_minimum_is_accepted(self, create_donation):
        donation = create_donation(amount="25.00")
        assert donation.amount == Decimal("25.00")

    def test_one_cent_below_minimum_is_rejected(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(amount=Decimal("24.99"))

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-30.00"), Decimal("30.001"), "abc", None])
    def test_invalid_amounts(self, create_donation, amount):
        with pytest.raises(ValidationError):
            create_donation(amount=amount)

    def test_unknown_frequency(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(frequency="weekly")

    @pytest.mark.parametrize("token", ["", "   ", None])
    def test_empty_token(self, create_donation, token):
        with pytest.raises(ValidationError):
            create_donation(payment_token=token)

    def test_end_date_must_follow_start_date(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(end_date=datetime(2024, 1, 1))

    def test_negative_fee_rejected(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(pay_transaction_fee=True, transaction_fee_amount=Decimal("-1.00"))

    def test_unknown_donor(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(donor_id=9999)

    def test_aware_start_date_is_normalized_to_utc(self, create_donation):
        tz = timezone(timedelta(hours=9))
        donation = create_donation(start_date=datetime(2024, 1, 1, 9, 0, tzinfo=tz))

        assert donation.start_date == datetime(2024, 1, 1, 0, 0)
        assert donation.next_due_date == datetime(2024, 1, 1, 0, 0)

    def test_campaign_code_resolved_to_id(self, create_donation, campaign):
        donation = create_donation(campaign_code="WINTER24")

        assert donation.campaign_id == campaign.id
        assert donation.campaign_code == "WINTER24"

    def test_unknown_campaign_id_rejected(self, create_donation):
        with pytest.raises(ValidationError):
            create_donation(campaign_id=12345)

    def test_creation_is_logged(self, db, create_donation):
        donation = create_donation()
        events = db.query(SystemLog).filter(SystemLog.recurring_donation_id == donation.id).all()
        assert [e.event_type for e in events] == ["recurring_created"]


class TestTransitions:
    def test_pause_and_resume(self, db, create_donation):
        donation = create_donation()

        paused = service.pause(db, donation.id, actor="alice", now=NOW)
        assert paused.status == "paused"
        assert paused.modified_by == "alice"
        assert paused.modified_at == NOW

        resumed = service.resume(db, donation.id, actor="alice", now=NOW)
        assert resumed.status == "active"

    def test_resume_keeps_past_due_date(self, db, create_donation):
        donation = create_donation()
        service.pause(db, donation.id, actor="alice", now=NOW)

        resumed = service.resume(db, donation.id, actor="alice", now=datetime(2024, 3, 1))

        assert resumed.next_due_date == datetime(2024, 1, 1)

    def test_pause_requires_active(self, db, create_donation):
        donation = create_donation()
        service.pause(db, donation.id, actor="alice", now=NOW)

        with pytest.raises(InvalidStateTransition) as exc:
            service.pause(db, donation.id, actor="alice", now=NOW)
        assert exc.value.current_status == "paused"

    def test_resume_requires_paused(self, db, create_donation):
        donation = create_donation()
        with pytest.raises(InvalidStateTransition):
            service.resume(db, donation.id, actor="alice", now=NOW)

    def test_cancel_stamps_metadata_and_notifies(self, db, create_donation, sent_mails):
        donation = create_donation()

        cancelled = service.cancel(db, donation.id, actor="alice", reason="Budget", now=NOW)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_date == NOW
        assert cancelled.cancelled_by == "alice"
        assert cancelled.cancellation_reason == "Budget"
        assert [m["template"] for m in sent_mails] == ["recurring_cancelled.html"]
        assert sent_mails[0]["to"] == "donor@example.com"

    def test_cancel_from_paused(self, db, create_donation):
        donation = create_donation()
        service.pause(db, donation.id, actor="alice", now=NOW)
        assert service.cancel(db, donation.id, actor="alice", now=NOW).status == "cancelled"

    def test_cancel_from_failed(self, db, create_donation):
        donation = create_donation()
        subscription_store.update_status(db, donation.id, "failed", "scheduler", NOW)
        db.commit()

        assert service.cancel(db, donation.id, actor="alice", now=NOW).status == "cancelled"

    @pytest.mark.parametrize("operation", [
        lambda db, i: service.pause(db, i, actor="alice", now=NOW),
        lambda db, i: service.resume(db, i, actor="alice", now=NOW),
        lambda db, i: service.cancel(db, i, actor="alice", now=NOW),
        lambda db, i: service.update_amount(db, i, Decimal("50.00"), actor="alice", now=NOW),
        lambda db, i: service.update_payment_token(db, i, "tok_new", actor="alice", now=NOW),
        lambda db, i: service.update_details(db, i, actor="alice", message="hi", now=NOW),
    ])
    def test_cancelled_is_terminal(self, db, create_donation, operation):
        donation = create_donation()
        service.cancel(db, donation.id, actor="alice", now=NOW)

        with pytest.raises(AlreadyTerminal):
            operation(db, donation.id)

        assert subscription_store.get_by_id(db, donation.id).status == "cancelled"

    def test_missing_subscription(self, db):
        with pytest.raises(NotFound):
            service.pause(db, 424242, actor="alice", now=NOW)


class TestUpdates:
    def test_update_amount_keeps_due_date(self, db, create_donation):
        donation = create_donation()

        updated = service.update_amount(db, donation.id, Decimal("40.00"), actor="alice", now=NOW)

        assert updated.amount == Decimal("40.00")
        assert updated.next_due_date == datetime(2024, 1, 1)

    def test_update_amount_revalidates_minimum(self, db, create_donation):
        donation = create_donation()
        with pytest.raises(ValidationError):
            service.update_amount(db, donation.id, Decimal("24.99"), actor="alice", now=NOW)
        assert subscription_store.get_by_id(db, donation.id).amount == Decimal("25.00")

    def test_update_amount_not_allowed_when_failed(self, db, create_donation):
        donation = create_donation()
        subscription_store.update_status(db, donation.id, "failed", "scheduler", NOW)
        db.commit()

        with pytest.raises(InvalidStateTransition):
            service.update_amount(db, donation.id, Decimal("40.00"), actor="alice", now=NOW)

    def test_update_token_resets_failure_state(self, db, create_donation):
        donation = create_donation()
        subscription_store.increment_failed_count(
            db, donation.id, "Card declined", datetime(2024, 1, 2), "scheduler", NOW,
        )
        db.commit()

        updated = service.update_payment_token(db, donation.id, "tok_new", actor="alice", now=NOW)

        assert decrypt_payment_token(updated.payment_token_enc) == "tok_new"
        assert updated.failed_attempt_count == 0
        assert updated.retry_not_before is None
        assert updated.last_error_message is None

    def test_update_token_does_not_reactivate_failed(self, db, create_donation):
        donation = create_donation()
        subscription_store.update_status(db, donation.id, "failed", "scheduler", NOW)
        db.commit()

        updated = service.update_payment_token(db, donation.id, "tok_new", actor="alice", now=NOW)

        assert updated.status == "failed"

    def test_update_details(self, db, create_donation):
        donation = create_donation()

        updated = service.update_details(
            db, donation.id, actor="alice",
            pay_transaction_fee=True, transaction_fee_amount="1.05",
            message="For the shelter", end_date=datetime(2025, 1, 1), now=NOW,
        )

        assert updated.pay_transaction_fee is True
        assert updated.transaction_fee_amount == Decimal("1.05")
        assert updated.donation_message == "For the shelter"
        assert updated.end_date == datetime(2025, 1, 1)

    def test_update_subscription_validates_before_saving(self, db, create_donation):
        donation = create_donation()

        with pytest.raises(ValidationError):
            service.update_subscription(
                db, donation.id, actor="alice", amount=Decimal("30.00"), end_date=datetime(2023, 1, 1), now=NOW,
            )
        db.rollback()

        assert subscription_store.get_by_id(db, donation.id).amount == Decimal("25.00")

    def test_update_subscription_token_only_allowed_when_failed(self, db, create_donation):
        donation = create_donation()
        subscription_store.update_status(db, donation.id, "failed", "scheduler", NOW)
        db.commit()

        updated = service.update_subscription(db, donation.id, actor="alice", payment_token="tok_new", now=NOW)

        assert updated.status == "failed"
        assert decrypt_payment_token(updated.payment_token_enc) == "tok_new"


class TestSoftDelete:
    def test_soft_delete_hides_from_reads(self, db, create_donation):
        donation = create_donation()

        service.soft_delete(db, donation.id, actor="admin", now=NOW)

        assert subscription_store.get_by_id(db, donation.id) is None
        deleted = subscription_store.get_by_id(db, donation.id, include_deleted=True)
        assert deleted is not None
        assert deleted.is_deleted is True
        assert deleted.modified_by == "admin"
