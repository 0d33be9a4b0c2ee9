from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from giving.core.database import Base


class Campaign(Base):
    """キャンペーン (カタログは外部管理。決済記録への紐付けにのみ参照)"""
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(100), unique=True, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
