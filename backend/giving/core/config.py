from decimal import Decimal
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データベース
    DATABASE_URL: str = "mysql+pymysql://giving:givingpassword@db:3306/giving?charset=utf8mb4"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # セキュリティ (決済トークン暗号化)
    AES_KEY: str = ""

    # Stripe
    STRIPE_SECRET_KEY: str = ""

    # Resend
    RESEND_API_KEY: str = ""
    RESEND_FROM_EMAIL: str = "noreply@example.com"

    # 寄付受付団体 (service_settings 未登録時の既定値)
    SITE_NAME: str = "Giving Platform"
    DONOR_PORTAL_URL: str = "http://localhost:3000/account/recurring"
    REPLY_TO_EMAIL: str = ""
    STATEMENT_DESCRIPTOR: str = ""
    ALLOWED_ORIGINS: str = "http://localhost:8000,http://localhost:3000"

    # レート制限 (複数 API プロセスでは redis:// を指定)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    RATE_LIMIT_DEFAULT: str = "100/minute"

    # 定期寄付
    RECURRING_MIN_AMOUNT: Decimal = Decimal("25.00")
    DEFAULT_CURRENCY: str = "USD"

    # 決済スケジューラ
    SCHEDULER_TOKEN: str = ""
    SCHEDULER_TIMEZONE: str = "UTC"
    SETTLEMENT_INTERVAL_MINUTES: int = 60
    SETTLEMENT_BATCH_LIMIT: int = 500
    SETTLEMENT_MAX_FAILED_ATTEMPTS: int = 3
    SETTLEMENT_RETRY_BACKOFF_MINUTES: int = 60
    SETTLEMENT_CLAIM_LEASE_MINUTES: int = 15
    # processed_at: 処理時刻起点で次回日を計算 / due_date: 前回予定日起点
    SETTLEMENT_ANCHOR: str = "processed_at"

    # 環境
    ENV: str = "development"
    DEBUG: bool = True

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
