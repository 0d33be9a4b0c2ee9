"""定期: 定期寄付の決済サイクル"""
from giving.core.config import settings
from giving.core.clock import utcnow
from giving.core.database import SessionLocal
from giving.core.redis import get_sync_redis, HEARTBEAT_KEY, EMERGENCY_STOP_KEY
from giving.services import settlement_service
from giving.services.stripe_service import StripeGateway
from giving.core.logging import get_logger

logger = get_logger(__name__)

WORKER_ID = settlement_service.default_worker_id()


def _heartbeat_ttl_seconds() -> int:
    # 2周期分ハートビートが途絶えたら停止とみなす
    return settings.SETTLEMENT_INTERVAL_MINUTES * 60 * 2


def settlement_job(gateway=None):
    """決済サイクルを1回実行 (例外はログに残してジョブは継続)"""
    now = utcnow()

    try:
        redis = get_sync_redis()
        redis.set(HEARTBEAT_KEY, now.isoformat(), ex=_heartbeat_ttl_seconds())
        if redis.get(EMERGENCY_STOP_KEY):
            logger.info("緊急停止中: 決済サイクルスキップ")
            return None
    except Exception as e:
        # Redis 不通でも決済は止めない (占有リースはDB側で担保)
        logger.warning(f"Redisハートビート/緊急停止チェック失敗: {e}")

    db = SessionLocal()
    try:
        return settlement_service.run_settlement_cycle(
            db, gateway or StripeGateway(), now, WORKER_ID,
        )
    except Exception as e:
        db.rollback()
        logger.error(f"決済サイクルエラー: {e}", exc_info=True)
        return None
    finally:
        db.close()
