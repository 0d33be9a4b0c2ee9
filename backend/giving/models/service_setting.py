from sqlalchemy import Column, Integer, String, Text, DateTime, func
from giving.core.database import Base


class ServiceSetting(Base):
    """寄付受付団体の設定 (1行のみ。未登録の項目は環境変数を使う)"""
    __tablename__ = "service_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    organization_name = Column(String(255), nullable=True, comment="通知メールの件名・本文に出す団体名")
    donor_portal_url = Column(String(500), nullable=True, comment="寄付者が定期寄付を管理するページ")
    from_email = Column(String(255), nullable=True)
    reply_to_email = Column(String(255), nullable=True, comment="寄付者からの返信先")
    statement_descriptor = Column(String(22), nullable=True, comment="カード明細の表記 (Stripe suffix)")

    stripe_secret_key_enc = Column(Text, nullable=True, comment="Stripe Secret Key (暗号化)")
    resend_api_key_enc = Column(Text, nullable=True, comment="Resend APIキー (暗号化)")

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
