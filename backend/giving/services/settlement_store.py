"""決済実績・決済台帳ストア

settlement_records は追加のみ (更新・削除の関数は提供しない)。
追加系はコミットしない。定期寄付側の更新と同じトランザクションでコミットする。
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from giving.core.clock import utcnow
from giving.models.recurring_donation import RecurringDonation
from giving.models.settlement_record import SettlementRecord
from giving.models.payment_transaction import PaymentTransaction


def add_payment_transaction(
    db: Session,
    recurring_donation_id: int,
    reference: str,
    amount: Decimal,
    currency: str,
    succeeded: bool,
    gateway_transaction_id: Optional[str] = None,
    error_message: Optional[str] = None,
    customer_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentTransaction:
    txn = PaymentTransaction(
        recurring_donation_id=recurring_donation_id,
        reference=reference,
        gateway_transaction_id=gateway_transaction_id,
        amount=amount,
        currency=currency,
        status="succeeded" if succeeded else "failed",
        error_message=error_message[:2000] if error_message else None,
        customer_email=customer_email,
        created_at=now or utcnow(),
    )
    db.add(txn)
    db.flush()
    return txn


def get_transaction_by_gateway_id(db: Session, gateway_transaction_id: str) -> Optional[PaymentTransaction]:
    return db.query(PaymentTransaction).filter(
        PaymentTransaction.gateway_transaction_id == gateway_transaction_id
    ).first()


def add_settlement_record(
    db: Session,
    donation: RecurringDonation,
    due_date: datetime,
    charged_amount: Decimal,
    gateway_transaction_id: str,
    payment_transaction_id: Optional[int],
    now: datetime,
) -> SettlementRecord:
    """課金時点の定期寄付の内容を写し取った決済実績を追加"""
    record = SettlementRecord(
        recurring_donation_id=donation.id,
        donor_id=donation.donor_id,
        amount=donation.amount,
        pay_transaction_fee=donation.pay_transaction_fee,
        transaction_fee_amount=donation.transaction_fee_amount if donation.pay_transaction_fee else Decimal("0.00"),
        charged_amount=charged_amount,
        currency=donation.currency,
        frequency=donation.frequency,
        donation_message=donation.donation_message,
        referral_code=donation.referral_code,
        campaign_code=donation.campaign_code,
        campaign_id=donation.campaign_id,
        gateway_transaction_id=gateway_transaction_id,
        payment_transaction_id=payment_transaction_id,
        due_date=due_date,
        created_at=now,
    )
    db.add(record)
    db.flush()
    return record


def list_for_subscription(db: Session, recurring_donation_id: int) -> list[SettlementRecord]:
    return (
        db.query(SettlementRecord)
        .filter(SettlementRecord.recurring_donation_id == recurring_donation_id)
        .order_by(SettlementRecord.due_date.asc(), SettlementRecord.id.asc())
        .all()
    )


def count_for_subscription(db: Session, recurring_donation_id: int) -> int:
    return db.query(SettlementRecord).filter(
        SettlementRecord.recurring_donation_id == recurring_donation_id
    ).count()


def count_transactions(db: Session, recurring_donation_id: int) -> int:
    """ゲートウェイ呼び出しの台帳件数 (成功・失敗とも。リセットされない)"""
    return db.query(PaymentTransaction).filter(
        PaymentTransaction.recurring_donation_id == recurring_donation_id
    ).count()
