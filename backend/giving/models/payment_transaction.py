from sqlalchemy import Column, Integer, String, DateTime, Numeric, Enum as SAEnum, ForeignKey, func
from giving.core.database import Base


class PaymentTransaction(Base):
    """決済ゲートウェイ呼び出しの台帳 (成功・失敗とも記録)"""
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recurring_donation_id = Column(
        Integer, ForeignKey("recurring_donations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    reference = Column(String(255), nullable=False, index=True, comment="ゲートウェイ冪等キー")
    gateway_transaction_id = Column(String(255), nullable=True, unique=True)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(SAEnum("succeeded", "failed", name="payment_transaction_status"), nullable=False)
    error_message = Column(String(2000), nullable=True)
    customer_email = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
