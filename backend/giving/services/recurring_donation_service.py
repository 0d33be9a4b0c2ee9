"""定期寄付ライフサイクル

状態遷移:
    active  ⇄ paused
    active / paused / failed / expired → cancelled (終端)
    failed / expired はスケジューラのみが設定する
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from giving.core.config import settings
from giving.core.clock import utcnow, to_naive_utc
from giving.core.exceptions import ValidationError, NotFound, InvalidStateTransition, AlreadyTerminal
from giving.core.money import to_money, has_sub_cent
from giving.core.security import encrypt_payment_token
from giving.core.logging import get_logger
from giving.models.donor import Donor
from giving.models.recurring_donation import RecurringDonation, FREQUENCIES, TERMINAL_STATUSES
from giving.services import subscription_store, donor_service, campaign_service
from giving.services.system_log_service import log_event
from giving.services.mail_service import send_recurring_cancelled_email

logger = get_logger(__name__)

# 金額・トークン・詳細を変更できる状態
MUTABLE_STATUSES = ("active", "paused")


# =========================================================
# 入力検証
# =========================================================

def _parse_amount(value, field: str) -> Decimal:
    try:
        if has_sub_cent(value):
            raise ValidationError(f"{field} must have at most 2 decimal places")
        return to_money(value)
    except (ValueError, ArithmeticError):
        raise ValidationError(f"{field} is not a valid amount")


def validate_amount(value) -> Decimal:
    """寄付額: 正の値・小数2桁以内・最低額以上 (最低額ちょうどは可)"""
    if value is None:
        raise ValidationError("Amount is required")
    amount = _parse_amount(value, "Amount")
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    if amount < settings.RECURRING_MIN_AMOUNT:
        raise ValidationError(
            f"Amount must be at least {settings.RECURRING_MIN_AMOUNT} {settings.DEFAULT_CURRENCY}"
        )
    return amount


def _validate_fee(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    fee = _parse_amount(value, "Transaction fee")
    if fee < 0:
        raise ValidationError("Transaction fee must not be negative")
    return fee


def _validate_token(token: Optional[str]) -> str:
    if token is None or not token.strip():
        raise ValidationError("Payment token is required")
    return token.strip()


def _validate_end_date(start_date: datetime, end_date: Optional[datetime]) -> Optional[datetime]:
    end_date = to_naive_utc(end_date)
    if end_date is not None and end_date <= start_date:
        raise ValidationError("End date must be after start date")
    return end_date


# =========================================================
# 状態チェック
# =========================================================

def _get(db: Session, donation_id: int) -> RecurringDonation:
    donation = subscription_store.get_by_id(db, donation_id)
    if not donation:
        raise NotFound("Recurring donation not found")
    return donation


def _ensure_not_terminal(donation: RecurringDonation, action: str):
    if donation.status in TERMINAL_STATUSES:
        raise AlreadyTerminal(
            f"Cannot {action} a {donation.status} recurring donation",
            current_status=donation.status,
        )


def _ensure_status(donation: RecurringDonation, allowed: tuple, action: str):
    _ensure_not_terminal(donation, action)
    if donation.status not in allowed:
        raise InvalidStateTransition(
            f"Cannot {action} a recurring donation in status '{donation.status}'",
            current_status=donation.status,
        )


def _record(db: Session, donation: RecurringDonation, event_type: str, message: str, now: datetime, details: dict = None):
    log_event(
        db, "info", event_type, message,
        recurring_donation_id=donation.id,
        donor_id=donation.donor_id,
        details=details,
        now=now,
        commit=False,
    )


# =========================================================
# 作成
# =========================================================

def create_subscription(
    db: Session,
    donor_id: int,
    amount,
    frequency: str,
    start_date: datetime,
    end_date: Optional[datetime],
    payment_token: str,
    pay_transaction_fee: bool = False,
    transaction_fee_amount=None,
    message: Optional[str] = None,
    referral_code: Optional[str] = None,
    campaign_code: Optional[str] = None,
    campaign_id: Optional[int] = None,
    created_by: str = "system",
    now: Optional[datetime] = None,
) -> RecurringDonation:
    """定期寄付を作成 (初回課金日 = 開始日)"""
    now = now or utcnow()

    amount = validate_amount(amount)
    if frequency not in FREQUENCIES:
        raise ValidationError(f"Unsupported frequency: {frequency}")
    if start_date is None:
        raise ValidationError("Start date is required")
    start_date = to_naive_utc(start_date)
    end_date = _validate_end_date(start_date, end_date)
    token = _validate_token(payment_token)
    fee = _validate_fee(transaction_fee_amount)

    if not db.query(Donor).filter(Donor.id == donor_id).first():
        raise ValidationError("Donor not found")
    campaign_id, campaign_code = campaign_service.resolve_campaign(db, campaign_id, campaign_code)

    donation = RecurringDonation(
        donor_id=donor_id,
        amount=amount,
        currency=settings.DEFAULT_CURRENCY,
        frequency=frequency,
        status="active",
        start_date=start_date,
        end_date=end_date,
        next_due_date=start_date,
        successful_charge_count=0,
        failed_attempt_count=0,
        payment_token_enc=encrypt_payment_token(token),
        pay_transaction_fee=bool(pay_transaction_fee),
        transaction_fee_amount=fee,
        donation_message=message,
        referral_code=referral_code,
        campaign_code=campaign_code,
        campaign_id=campaign_id,
        is_deleted=False,
    )
    donation = subscription_store.add(db, donation, created_by, now)

    log_event(
        db, "info", "recurring_created",
        f"定期寄付作成: {amount} {donation.currency} / {frequency}",
        recurring_donation_id=donation.id,
        donor_id=donor_id,
        now=now,
    )
    logger.info(f"定期寄付作成: id={donation.id}, donor_id={donor_id}, amount={amount}, frequency={frequency}")
    return donation


# =========================================================
# 状態遷移
# =========================================================

def pause(db: Session, donation_id: int, actor: str, now: Optional[datetime] = None) -> RecurringDonation:
    """active → paused"""
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_status(donation, ("active",), "pause")

    donation.status = "paused"
    _record(db, donation, "recurring_paused", f"一時停止: by {actor}", now)
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付一時停止: id={donation_id}, by={actor}")
    return donation


def resume(db: Session, donation_id: int, actor: str, now: Optional[datetime] = None) -> RecurringDonation:
    """
    paused → active

    next_due_date は再計算しない。期日を過ぎていれば次回サイクルで即時課金される。
    """
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_status(donation, ("paused",), "resume")

    donation.status = "active"
    _record(db, donation, "recurring_resumed", f"再開: by {actor}", now)
    donation = subscription_store.save(db, donation, actor, now)
    if donation.next_due_date <= now:
        logger.info(f"定期寄付再開 (期日経過のため次回サイクルで課金): id={donation_id}, due={donation.next_due_date}")
    else:
        logger.info(f"定期寄付再開: id={donation_id}, by={actor}")
    return donation


def cancel(
    db: Session,
    donation_id: int,
    actor: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RecurringDonation:
    """非終端状態 → cancelled (以降の操作は全て AlreadyTerminal)"""
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_not_terminal(donation, "cancel")

    previous = donation.status
    donation.status = "cancelled"
    donation.cancelled_date = now
    donation.cancelled_by = actor
    donation.cancellation_reason = reason
    _record(
        db, donation, "recurring_cancelled", f"解約: by {actor}", now,
        details={"previous_status": previous, "reason": reason},
    )
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付解約: id={donation_id}, by={actor}, previous={previous}")

    contact = donor_service.get_contact(db, donation.donor_id)
    if contact:
        send_recurring_cancelled_email(
            contact.email, contact.name, donation.amount, donation.currency, donation.frequency,
        )
    return donation


# =========================================================
# 内容変更
# =========================================================

def _apply_amount(donation: RecurringDonation, new_amount) -> Decimal:
    amount = validate_amount(new_amount)
    donation.amount = amount
    return amount


def _apply_token(donation: RecurringDonation, new_token: str):
    donation.payment_token_enc = encrypt_payment_token(_validate_token(new_token))
    # 支払い方法の更新で失敗状態をリセット (failed からの自動復帰はしない)
    donation.failed_attempt_count = 0
    donation.retry_not_before = None
    donation.last_error_message = None


def _apply_details(
    donation: RecurringDonation,
    pay_transaction_fee: Optional[bool],
    transaction_fee_amount,
    message: Optional[str],
    end_date: Optional[datetime],
):
    if pay_transaction_fee is not None:
        donation.pay_transaction_fee = bool(pay_transaction_fee)
    if transaction_fee_amount is not None:
        donation.transaction_fee_amount = _validate_fee(transaction_fee_amount)
    if message is not None:
        donation.donation_message = message
    if end_date is not None:
        donation.end_date = _validate_end_date(donation.start_date, end_date)


def update_amount(db: Session, donation_id: int, new_amount, actor: str, now: Optional[datetime] = None) -> RecurringDonation:
    """寄付額変更 (active / paused のみ。next_due_date は変更しない)"""
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_status(donation, MUTABLE_STATUSES, "update")

    previous = donation.amount
    amount = _apply_amount(donation, new_amount)
    _record(
        db, donation, "recurring_amount_updated", f"金額変更: {previous} → {amount}", now,
        details={"previous": str(previous), "new": str(amount)},
    )
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付金額変更: id={donation_id}, {previous} → {amount}")
    return donation


def update_payment_token(db: Session, donation_id: int, new_token: str, actor: str, now: Optional[datetime] = None) -> RecurringDonation:
    """
    決済トークン差し替え (以降の課金のみに適用)

    cancelled は不可。failed はトークンを更新できるが failed のまま。
    """
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_not_terminal(donation, "update")

    _apply_token(donation, new_token)
    _record(db, donation, "recurring_token_updated", f"決済トークン更新: by {actor}", now)
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付トークン更新: id={donation_id}, status={donation.status}")
    return donation


def update_details(
    db: Session,
    donation_id: int,
    actor: str,
    pay_transaction_fee: Optional[bool] = None,
    transaction_fee_amount=None,
    message: Optional[str] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> RecurringDonation:
    """手数料負担・メッセージ・終了日の変更 (active / paused のみ)"""
    now = now or utcnow()
    donation = _get(db, donation_id)
    _ensure_status(donation, MUTABLE_STATUSES, "update")

    _apply_details(donation, pay_transaction_fee, transaction_fee_amount, message, end_date)
    _record(db, donation, "recurring_details_updated", f"詳細変更: by {actor}", now)
    return subscription_store.save(db, donation, actor, now)


def update_subscription(
    db: Session,
    donation_id: int,
    actor: str,
    amount=None,
    payment_token: Optional[str] = None,
    pay_transaction_fee: Optional[bool] = None,
    transaction_fee_amount=None,
    message: Optional[str] = None,
    end_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> RecurringDonation:
    """管理APIの一括更新 (全項目を検証してから1回で保存する)"""
    now = now or utcnow()
    donation = _get(db, donation_id)
    details_given = any(v is not None for v in (pay_transaction_fee, transaction_fee_amount, message, end_date))
    if amount is None and not details_given:
        # トークンのみの更新は failed でも可
        _ensure_not_terminal(donation, "update")
    else:
        _ensure_status(donation, MUTABLE_STATUSES, "update")

    changed = []
    if amount is not None:
        _apply_amount(donation, amount)
        changed.append("amount")
    if payment_token is not None:
        _apply_token(donation, payment_token)
        changed.append("payment_token")
    if details_given:
        _apply_details(donation, pay_transaction_fee, transaction_fee_amount, message, end_date)
        changed.append("details")

    if not changed:
        return donation

    _record(
        db, donation, "recurring_updated", f"更新: {', '.join(changed)}", now,
        details={"fields": changed},
    )
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付更新: id={donation_id}, fields={changed}")
    return donation


def soft_delete(db: Session, donation_id: int, actor: str, now: Optional[datetime] = None) -> RecurringDonation:
    """論理削除 (物理削除はしない)"""
    now = now or utcnow()
    donation = _get(db, donation_id)

    donation.is_deleted = True
    _record(db, donation, "recurring_deleted", f"論理削除: by {actor}", now)
    donation = subscription_store.save(db, donation, actor, now)
    logger.info(f"定期寄付論理削除: id={donation_id}, by={actor}")
    return donation
