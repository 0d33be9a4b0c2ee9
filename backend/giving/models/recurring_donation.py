from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, Numeric, Enum as SAEnum, ForeignKey, Index, func,
)
from giving.core.database import Base

FREQUENCIES = ("monthly", "annually")
STATUSES = ("active", "paused", "cancelled", "failed", "expired")
# 終端状態: これ以上どの状態にも遷移しない
TERMINAL_STATUSES = ("cancelled",)


class RecurringDonation(Base):
    """
    定期寄付 (購読)

    status:
        active    = 課金対象
        paused    = 一時停止 (active へ再開可)
        cancelled = 解約済み (終端)
        failed    = 連続決済失敗で停止
        expired   = end_date 到来で終了

    next_due_date:
        スケジューラが参照する唯一の課金キー。
        決済成功時のみ進み、失敗時は据え置き (次サイクルで再試行)。

    claimed_by / claimed_until:
        決済中の占有リース。複数スケジューラが同じ行を二重課金しないための条件付き更新に使う。
    """
    __tablename__ = "recurring_donations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    donor_id = Column(Integer, ForeignKey("donors.id", ondelete="RESTRICT"), nullable=False, index=True)

    amount = Column(Numeric(18, 2), nullable=False, comment="1回あたりの寄付額")
    currency = Column(String(3), nullable=False, default="USD")
    frequency = Column(SAEnum(*FREQUENCIES, name="recurring_frequency"), nullable=False, comment="作成後変更不可")
    status = Column(SAEnum(*STATUSES, name="recurring_donation_status"), nullable=False, default="active", index=True)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)
    next_due_date = Column(DateTime, nullable=False, index=True)
    last_processed_date = Column(DateTime, nullable=True)

    successful_charge_count = Column(Integer, nullable=False, default=0)
    failed_attempt_count = Column(Integer, nullable=False, default=0, comment="連続失敗回数 (成功でリセット)")
    retry_not_before = Column(DateTime, nullable=True, comment="失敗後のバックオフ期限")
    last_error_message = Column(String(2000), nullable=True)

    payment_token_enc = Column(Text, nullable=False, comment="決済トークン (暗号化)")

    # 手数料負担
    pay_transaction_fee = Column(Boolean, nullable=False, default=False)
    transaction_fee_amount = Column(Numeric(18, 2), nullable=False, default=0)

    donation_message = Column(String(1000), nullable=True)
    referral_code = Column(String(100), nullable=True, index=True)
    campaign_code = Column(String(100), nullable=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)

    # 決済占有リース
    claimed_by = Column(String(255), nullable=True)
    claimed_until = Column(DateTime, nullable=True)

    # 解約情報
    cancelled_date = Column(DateTime, nullable=True)
    cancelled_by = Column(String(255), nullable=True)
    cancellation_reason = Column(String(1000), nullable=True)

    # 論理削除 (物理削除はしない)
    is_deleted = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    modified_by = Column(String(255), nullable=True)
    modified_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_recurring_donations_status_next_due_date", "status", "next_due_date"),
    )
