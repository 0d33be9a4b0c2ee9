from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from giving.core.config import settings
from giving.core.exceptions import DonationError
from giving.core.logging import setup_logging, get_logger
from giving.core.rate_limit import limiter, rate_limit_exceeded_handler
from giving.routers import health, recurring_donations, admin_settlements

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    logger.info("アプリケーション起動")
    yield
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# レート制限設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# --- エラーレスポンスは全て {"detail": reason} ---
def _translate_error(err: dict) -> str:
    t = err.get("type", "")
    ctx = err.get("ctx", {})
    loc = err.get("loc", [])
    field = str(loc[-1]) if loc else "value"

    if t == "missing":
        return f"{field} is required"
    if t == "string_too_long":
        return f"{field} must be at most {ctx.get('max_length', '')} characters"
    if t in ("decimal_parsing", "decimal_type", "float_parsing"):
        return f"{field} must be a number"
    if t in ("int_parsing", "int_type"):
        return f"{field} must be an integer"
    if t in ("datetime_parsing", "datetime_from_date_parsing", "datetime_type"):
        return f"{field} must be a valid datetime"
    if t == "literal_error":
        return f"{field} must be one of {ctx.get('expected', '')}"
    if t == "bool_parsing":
        return f"{field} must be a boolean"
    return f"{field}: invalid value"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [_translate_error(e) for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "; ".join(messages)})


@app.exception_handler(DonationError)
async def donation_error_handler(request: Request, exc: DonationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.reason})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # 内部例外の内容はレスポンスに含めない
    logger.error(f"未処理の例外: {request.method} {request.url.path} - {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ルーター登録
app.include_router(health.router)
app.include_router(recurring_donations.router)
app.include_router(admin_settlements.router)
