from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, UniqueConstraint, func,
)
from giving.core.database import Base


class SettlementRecord(Base):
    """
    定期寄付の決済実績 (1回の課金成功につき1行)

    課金時点の金額・手数料・メッセージ等を非正規化して保持する。
    作成後は更新・削除しない。
    (recurring_donation_id, due_date) の一意制約で同一サイクルの二重記録を防ぐ。
    """
    __tablename__ = "settlement_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recurring_donation_id = Column(
        Integer, ForeignKey("recurring_donations.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    donor_id = Column(Integer, ForeignKey("donors.id", ondelete="RESTRICT"), nullable=False, index=True)

    amount = Column(Numeric(18, 2), nullable=False, comment="寄付額 (手数料除く)")
    pay_transaction_fee = Column(Boolean, nullable=False, default=False)
    transaction_fee_amount = Column(Numeric(18, 2), nullable=False, default=0)
    charged_amount = Column(Numeric(18, 2), nullable=False, comment="実請求額")
    currency = Column(String(3), nullable=False)
    frequency = Column(String(20), nullable=False)

    donation_message = Column(String(1000), nullable=True)
    referral_code = Column(String(100), nullable=True, index=True)
    campaign_code = Column(String(100), nullable=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)

    gateway_transaction_id = Column(String(255), nullable=False, unique=True)
    payment_transaction_id = Column(Integer, ForeignKey("payment_transactions.id", ondelete="RESTRICT"), nullable=True)
    due_date = Column(DateTime, nullable=False, comment="この決済で消化した予定日")

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("recurring_donation_id", "due_date", name="uq_settlement_donation_due_date"),
    )
