"""団体設定・APIキー解決: DB (service_settings) 優先 → 環境変数フォールバック"""
from giving.core.database import SessionLocal
from giving.core.config import settings
from giving.core.security import decrypt
from giving.core.logging import get_logger

logger = get_logger(__name__)


def _read_setting(field_name: str, encrypted: bool = False) -> str | None:
    """service_settings の1カラムを取得 (暗号化カラムは復号して返す)"""
    db = SessionLocal()
    try:
        from giving.models.service_setting import ServiceSetting
        setting = db.query(ServiceSetting).first()
        if not setting:
            return None
        value = getattr(setting, field_name, None)
        if not value:
            return None
        return decrypt(value) if encrypted else value
    except Exception as e:
        logger.debug(f"DB設定取得スキップ ({field_name}): {e}")
        return None
    finally:
        db.close()


def get_stripe_secret_key() -> str:
    return _read_setting("stripe_secret_key_enc", encrypted=True) or settings.STRIPE_SECRET_KEY


def get_resend_api_key() -> str:
    return _read_setting("resend_api_key_enc", encrypted=True) or settings.RESEND_API_KEY


def get_from_email() -> str:
    return _read_setting("from_email") or settings.RESEND_FROM_EMAIL


def get_reply_to_email() -> str | None:
    """未設定なら None (Resend に reply_to を渡さない)"""
    return _read_setting("reply_to_email") or settings.REPLY_TO_EMAIL or None


def get_organization_name() -> str:
    return _read_setting("organization_name") or settings.SITE_NAME


def get_donor_portal_url() -> str:
    """メール内の「定期寄付の管理」リンク先"""
    return _read_setting("donor_portal_url") or settings.DONOR_PORTAL_URL


def get_statement_descriptor() -> str | None:
    """カード明細の表記。Stripe の上限 22 文字に切り詰める"""
    value = (_read_setting("statement_descriptor") or settings.STATEMENT_DESCRIPTOR).strip()
    return value[:22] or None
