from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, func
from giving.core.database import Base


class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    level = Column(String(20), nullable=False, index=True, comment="INFO/WARNING/ERROR/CRITICAL")
    event_type = Column(String(100), nullable=False, index=True, comment="イベント種別")
    recurring_donation_id = Column(
        Integer, ForeignKey("recurring_donations.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    donor_id = Column(Integer, ForeignKey("donors.id", ondelete="SET NULL"), nullable=True, index=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True, comment="詳細データ")
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
