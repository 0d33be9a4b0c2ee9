"""ヘルスチェック: DB・Redis・決済スケジューラの稼働状況"""
from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool
from giving.core.database import check_db_connection
from giving.core.redis import check_redis_connection, get_redis, HEARTBEAT_KEY, EMERGENCY_STOP_KEY
from giving.core.logging import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


async def _scheduler_state() -> dict:
    """最終ハートビートと緊急停止フラグ (Redis 不通時は不明扱い)"""
    try:
        r = await get_redis()
        heartbeat = await r.get(HEARTBEAT_KEY)
        stopped = await r.get(EMERGENCY_STOP_KEY)
    except Exception as e:
        logger.warning(f"スケジューラ状態の取得失敗: {e}")
        return {"last_heartbeat": None, "emergency_stop": None}
    return {"last_heartbeat": heartbeat, "emergency_stop": bool(stopped)}


@router.get("/health")
@router.get("/api/health")
async def health_check():
    db_ok = await run_in_threadpool(check_db_connection)
    redis_ok = await check_redis_connection()

    return {
        "status": "ok" if (db_ok and redis_ok) else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "redis": "connected" if redis_ok else "disconnected",
        "scheduler": await _scheduler_state() if redis_ok else None,
    }
