from sqlalchemy import Column, Integer, DateTime, ForeignKey, func
from giving.core.database import Base


class Donor(Base):
    """寄付者 (users と1対1)"""
    __tablename__ = "donors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
