"""共通依存関数: 呼び出し元の識別・スケジューラトークン検証"""
import hmac
from typing import Optional
from fastapi import Query, Header, HTTPException

from giving.core.config import settings


async def require_user_email(user_email: str = Query(..., max_length=255)) -> str:
    """呼び出し元ユーザーのメールアドレス (所有者チェック・操作者記録に使う)"""
    email = user_email.strip()
    if not email:
        raise HTTPException(status_code=400, detail="user_email is required")
    return email


async def require_scheduler_token(
    x_scheduler_token: Optional[str] = Header(default=None),
) -> None:
    """X-Scheduler-Token ヘッダー必須。未設定の環境では常に拒否"""
    if not settings.SCHEDULER_TOKEN:
        raise HTTPException(status_code=403, detail="Scheduler endpoint is disabled")
    if not x_scheduler_token or not hmac.compare_digest(x_scheduler_token, settings.SCHEDULER_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid scheduler token")
