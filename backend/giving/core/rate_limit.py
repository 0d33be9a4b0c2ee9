"""レート制限 (slowapi)

寄付者向け API は user_email 単位、それ以外 (管理 API 等) はクライアントIP単位で数える。
同じ寄付者が複数端末から操作しても上限を共有する。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse
from giving.core.config import settings

# 定期寄付作成はカード登録を伴うため厳しめ
CREATE_RATE_LIMIT = "10/minute"
MUTATION_RATE_LIMIT = "30/minute"
SETTLEMENT_RUN_RATE_LIMIT = "6/minute"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def rate_limit_key(request: Request) -> str:
    user_email = request.query_params.get("user_email")
    if user_email:
        return f"donor:{user_email.strip().lower()}"
    return f"ip:{client_ip(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please retry later.", "retry_after": exc.detail},
    )
