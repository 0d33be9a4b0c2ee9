import redis.asyncio as aioredis
import redis as sync_redis
from giving.core.config import settings

HEARTBEAT_KEY = "scheduler:settlement:heartbeat"
EMERGENCY_STOP_KEY = "settlement:emergency_stop"

# 非同期Redis (FastAPI用)
redis_pool = aioredis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=20,
    decode_responses=True,
)


async def get_redis() -> aioredis.Redis:
    """FastAPI依存関数: 非同期Redisクライアント取得"""
    return aioredis.Redis(connection_pool=redis_pool)


# 同期Redis (Scheduler用)
sync_redis_pool = sync_redis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=10,
    decode_responses=True,
)


def get_sync_redis() -> sync_redis.Redis:
    """同期Redisクライアント取得"""
    return sync_redis.Redis(connection_pool=sync_redis_pool)


async def check_redis_connection() -> bool:
    """Redis接続チェック"""
    try:
        r = await get_redis()
        await r.ping()
        return True
    except Exception:
        return False


def check_emergency_stop() -> bool:
    """決済処理の緊急停止フラグチェック"""
    redis = get_sync_redis()
    return bool(redis.get(EMERGENCY_STOP_KEY))


def set_emergency_stop(active: bool):
    """決済処理の緊急停止フラグ設定"""
    redis = get_sync_redis()
    if active:
        redis.set(EMERGENCY_STOP_KEY, "1")
    else:
        redis.delete(EMERGENCY_STOP_KEY)
