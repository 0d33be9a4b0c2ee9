"""定期寄付の決済サイクル

1サイクルの流れ:
1. 終了日を過ぎた active を expired にする
2. 課金対象を next_due_date 昇順で取得
3. 1件ずつ: 占有 → 課金 → 成功/失敗の記録 → 占有解除
   1件の例外は記録して次へ進む (サイクル全体は止めない)
"""
import os
import socket
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from giving.core.config import settings
from giving.core.clock import add_period
from giving.core.exceptions import GatewayFailure, StoreFailure
from giving.core.money import to_money
from giving.core.security import decrypt_payment_token
from giving.core.logging import get_logger
from giving.models.recurring_donation import RecurringDonation
from giving.services import subscription_store, settlement_store, donor_service, campaign_service
from giving.services.stripe_service import PaymentGateway, ChargeResult
from giving.services.system_log_service import log_event
from giving.services.mail_service import send_recurring_thank_you_email, send_recurring_failed_email

logger = get_logger(__name__)

SCHEDULER_ACTOR = "settlement_scheduler"


def default_worker_id(prefix: str = "scheduler") -> str:
    """占有リースの所有者ID (ホスト名:PID)"""
    return f"{prefix}:{socket.gethostname()}:{os.getpid()}"


@dataclass
class CycleResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    expired: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def compute_charge_amount(donation: RecurringDonation) -> Decimal:
    """請求額 = 寄付額 + 手数料 (手数料負担ありの場合のみ)"""
    amount = to_money(donation.amount)
    if donation.pay_transaction_fee and donation.transaction_fee_amount:
        amount += to_money(donation.transaction_fee_amount)
    return amount


def build_reference(donation_id: int, due_date: datetime, sequence: int) -> str:
    """
    ゲートウェイ冪等キー

    sequence はこの定期寄付の台帳件数。台帳に記録された呼び出しごとに進み、リセットされない。
    台帳に残らなかった呼び出し (ゲートウェイ例外) の再送は同じキーになり二重課金されない。
    失敗後の再試行や支払い方法の変更後は別キーになる。
    """
    return f"recurring-{donation_id}-{due_date:%Y%m%d%H%M%S}-{sequence}"


def next_due_date_after(donation: RecurringDonation, due_date: datetime, now: datetime) -> datetime:
    if settings.SETTLEMENT_ANCHOR == "due_date":
        return add_period(due_date, donation.frequency)
    return add_period(now, donation.frequency)


def _retry_not_before(failed_count: int, now: datetime) -> datetime:
    minutes = settings.SETTLEMENT_RETRY_BACKOFF_MINUTES * (2 ** max(failed_count - 1, 0))
    return now + timedelta(minutes=minutes)


def _description(db: Session, donation: RecurringDonation) -> str:
    description = f"Recurring donation #{donation.id} ({donation.frequency})"
    title = campaign_service.get_campaign_title(db, donation.campaign_id)
    if title:
        description += f" - {title}"
    return description


# =========================================================
# 成功 / 失敗の記録
# =========================================================

def _record_success(
    db: Session,
    donation: RecurringDonation,
    due_date: datetime,
    charge_amount: Decimal,
    reference: str,
    result: ChargeResult,
    contact,
    worker_id: str,
    now: datetime,
) -> bool:
    """決済成功: 台帳・決済実績・次回日・成功回数を1トランザクションで記録"""
    txn = settlement_store.add_payment_transaction(
        db,
        recurring_donation_id=donation.id,
        reference=reference,
        amount=charge_amount,
        currency=donation.currency,
        succeeded=True,
        gateway_transaction_id=result.transaction_id,
        customer_email=contact.email if contact else None,
        now=now,
    )
    settlement_store.add_settlement_record(
        db, donation, due_date, charge_amount, result.transaction_id, txn.id, now,
    )

    next_due = next_due_date_after(donation, due_date, now)
    advanced = subscription_store.update_next_due_date(
        db, donation.id, next_due, SCHEDULER_ACTOR, now,
        expected_due_date=due_date, claimed_by=worker_id,
    )
    if not advanced:
        db.rollback()
        logger.error(
            f"次回日の更新競合のため記録を破棄: id={donation.id}, due={due_date}, "
            f"transaction_id={result.transaction_id}"
        )
        subscription_store.release_claim(db, donation.id, worker_id)
        log_event(
            db, "error", "settlement_conflict",
            f"課金成功後に次回日の更新競合が発生: transaction_id={result.transaction_id}",
            recurring_donation_id=donation.id,
            donor_id=donation.donor_id,
            details={"due_date": due_date.isoformat(), "reference": reference},
            now=now,
        )
        return False

    subscription_store.increment_successful_count(db, donation.id, SCHEDULER_ACTOR, now)
    subscription_store.release_claim(db, donation.id, worker_id)
    db.commit()

    logger.info(
        f"定期寄付決済成功: id={donation.id}, amount={charge_amount}, "
        f"due={due_date}, next_due={next_due}, transaction_id={result.transaction_id}"
    )
    if contact:
        send_recurring_thank_you_email(
            contact.email, contact.name, charge_amount, donation.currency, donation.frequency, next_due,
        )
    return True


def _record_failure(
    db: Session,
    donation: RecurringDonation,
    due_date: datetime,
    charge_amount: Decimal,
    reference: str,
    result: ChargeResult,
    contact,
    worker_id: str,
    now: datetime,
):
    """決済失敗: next_due_date は据え置き、失敗回数とバックオフを記録。上限到達で failed"""
    error_message = result.error_message or "Payment failed"
    settlement_store.add_payment_transaction(
        db,
        recurring_donation_id=donation.id,
        reference=reference,
        amount=charge_amount,
        currency=donation.currency,
        succeeded=False,
        gateway_transaction_id=result.transaction_id,
        error_message=error_message,
        customer_email=contact.email if contact else None,
        now=now,
    )

    failed_count = (donation.failed_attempt_count or 0) + 1
    exhausted = failed_count >= settings.SETTLEMENT_MAX_FAILED_ATTEMPTS
    retry_at = None if exhausted else _retry_not_before(failed_count, now)
    counted = subscription_store.increment_failed_count(
        db, donation.id, error_message, retry_at, SCHEDULER_ACTOR, now,
        expected_status="active", claimed_by=worker_id,
    )
    if not counted:
        # 課金中に一時停止・解約された: 失敗回数には数えない
        subscription_store.record_error(
            db, donation.id, error_message, None, SCHEDULER_ACTOR, now, claimed_by=worker_id,
        )
        subscription_store.release_claim(db, donation.id, worker_id)
        db.commit()
        logger.warning(
            f"課金中に状態が変更されたため失敗回数を更新しない: id={donation.id}, error={error_message}"
        )
        return

    if exhausted:
        exhausted = subscription_store.update_status(
            db, donation.id, "failed", SCHEDULER_ACTOR, now,
            expected_status="active", claimed_by=worker_id,
        )
    if exhausted:
        log_event(
            db, "warning", "recurring_failed",
            f"連続決済失敗 {failed_count} 回のため停止: {error_message}",
            recurring_donation_id=donation.id,
            donor_id=donation.donor_id,
            details={"failed_attempt_count": failed_count, "due_date": due_date.isoformat()},
            now=now,
            commit=False,
        )
    subscription_store.release_claim(db, donation.id, worker_id)
    db.commit()

    donor_email = contact.email if contact else "-"
    if exhausted:
        logger.warning(
            f"定期寄付を failed に変更: id={donation.id}, donor={donor_email}, attempts={failed_count}"
        )
        if contact:
            send_recurring_failed_email(
                contact.email, contact.name, charge_amount, donation.currency, failed_count,
            )
    else:
        logger.warning(
            f"定期寄付決済失敗: id={donation.id}, donor={donor_email}, attempt={failed_count}, "
            f"retry_after={retry_at}, error={error_message}"
        )


# =========================================================
# 1件処理 / サイクル
# =========================================================

def process_subscription(
    db: Session,
    gateway: PaymentGateway,
    donation: RecurringDonation,
    now: datetime,
    worker_id: str,
) -> Optional[bool]:
    """
    1件の定期寄付を課金する

    Returns:
        True=成功 / False=失敗 / None=占有できずスキップ
    """
    donation_id = donation.id
    due_date = donation.next_due_date
    lease = timedelta(minutes=settings.SETTLEMENT_CLAIM_LEASE_MINUTES)

    if not subscription_store.claim(db, donation_id, due_date, worker_id, now, lease):
        logger.info(f"他プロセスが処理中または処理済みのためスキップ: id={donation_id}, due={due_date}")
        return None

    # claim のコミットで失効した属性を読み直す
    db.refresh(donation)
    charge_amount = compute_charge_amount(donation)
    reference = build_reference(donation_id, due_date, settlement_store.count_transactions(db, donation_id))
    contact = donor_service.get_contact(db, donation.donor_id)
    token = decrypt_payment_token(donation.payment_token_enc)

    try:
        result = gateway.charge(
            amount=charge_amount,
            currency=donation.currency,
            token=token,
            reference=reference,
            description=_description(db, donation),
            customer_email=contact.email if contact else None,
        )
    except Exception as e:
        # 試行回数は進めない。次回サイクルは同じ冪等キーで再送される
        failure = GatewayFailure(f"Gateway call failed: {e}")
        _record_gateway_error(db, donation, failure.reason, worker_id, now)
        raise failure from e

    try:
        if result.success and result.transaction_id:
            return _record_success(db, donation, due_date, charge_amount, reference, result, contact, worker_id, now)

        if result.success:
            result = ChargeResult(success=False, error_message="Gateway returned no transaction id")
        _record_failure(db, donation, due_date, charge_amount, reference, result, contact, worker_id, now)
        return False
    except SQLAlchemyError as e:
        raise StoreFailure(f"Failed to record charge result: {e}") from e


def _record_gateway_error(db: Session, donation: RecurringDonation, error_message: str, worker_id: str, now: datetime):
    """ゲートウェイ呼び出し自体の失敗: エラー内容とバックオフを記録して占有解除"""
    donation_id = donation.id
    retry_at = _retry_not_before((donation.failed_attempt_count or 0) + 1, now)
    try:
        subscription_store.record_error(
            db, donation_id, error_message, retry_at, SCHEDULER_ACTOR, now, claimed_by=worker_id,
        )
        subscription_store.release_claim(db, donation_id, worker_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"ゲートウェイ障害の記録失敗: id={donation_id} - {e}")
        return
    logger.warning(f"ゲートウェイ障害: id={donation_id}, retry_after={retry_at}, error={error_message}")


def _release_after_error(db: Session, donation_id: int, worker_id: str):
    try:
        subscription_store.release_claim(db, donation_id, worker_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"占有解除失敗 (リース期限切れで自動解除): id={donation_id} - {e}")


def run_settlement_cycle(
    db: Session,
    gateway: PaymentGateway,
    now: datetime,
    worker_id: str,
    limit: Optional[int] = None,
) -> CycleResult:
    """決済サイクルを1回実行"""
    result = CycleResult()

    expired_ids = subscription_store.expire_ended(db, now, SCHEDULER_ACTOR)
    result.expired = len(expired_ids)
    for donation_id in expired_ids:
        logger.info(f"定期寄付期間終了: id={donation_id}")
        log_event(db, "info", "recurring_expired", "終了日到来のため expired", recurring_donation_id=donation_id, now=now)

    due = subscription_store.list_due(db, now, limit or settings.SETTLEMENT_BATCH_LIMIT)
    logger.info(f"決済サイクル開始: 対象 {len(due)} 件, worker={worker_id}")

    for donation in due:
        donation_id = donation.id
        try:
            outcome = process_subscription(db, gateway, donation, now, worker_id)
        except (GatewayFailure, StoreFailure) as e:
            db.rollback()
            logger.warning(
                f"定期寄付の決済処理を中断: id={donation_id} - {e.reason}",
                extra={"recurring_donation_id": donation_id, "worker_id": worker_id},
            )
            _release_after_error(db, donation_id, worker_id)
            result.attempted += 1
            result.failed += 1
            continue
        except Exception as e:
            db.rollback()
            logger.error(
                f"定期寄付の決済処理で例外: id={donation_id} - {e}",
                exc_info=True,
                extra={"recurring_donation_id": donation_id, "worker_id": worker_id},
            )
            _release_after_error(db, donation_id, worker_id)
            result.attempted += 1
            result.failed += 1
            continue

        if outcome is None:
            result.skipped += 1
            continue
        result.attempted += 1
        if outcome:
            result.succeeded += 1
        else:
            result.failed += 1

    logger.info(
        f"決済サイクル完了: 成功 {result.succeeded}/{result.attempted}, "
        f"失敗 {result.failed}, スキップ {result.skipped}, 期間終了 {result.expired}",
        extra={"worker_id": worker_id, "extra_data": result.to_dict()},
    )
    return result
