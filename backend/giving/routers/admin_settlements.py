"""管理: 決済サイクルの手動実行・緊急停止・イベントログ"""
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from giving.core.database import get_db
from giving.core.clock import utcnow
from giving.core.redis import check_emergency_stop, set_emergency_stop
from giving.core.rate_limit import limiter, SETTLEMENT_RUN_RATE_LIMIT
from giving.schemas.recurring_donation import CycleResultResponse
from giving.services import settlement_service
from giving.services.stripe_service import StripeGateway
from giving.services.system_log_service import list_events, log_event
from giving.routers.deps import require_scheduler_token
from giving.core.logging import get_logger

router = APIRouter(prefix="/api/admin/settlements", tags=["admin-settlements"])
logger = get_logger(__name__)


class EmergencyStopRequest(BaseModel):
    active: bool


def get_gateway():
    """決済ゲートウェイ (テストでは dependency_overrides で差し替え)"""
    return StripeGateway()


@router.post("/run", response_model=CycleResultResponse)
@limiter.limit(SETTLEMENT_RUN_RATE_LIMIT)
def run_settlements(
    request: Request,
    db: Session = Depends(get_db),
    gateway=Depends(get_gateway),
    _=Depends(require_scheduler_token),
):
    """決済サイクルを1回実行 (スケジューラと同じ処理)"""
    if check_emergency_stop():
        raise HTTPException(status_code=409, detail="Settlement is under emergency stop")

    worker_id = settlement_service.default_worker_id(prefix="manual")
    logger.info(f"手動決済サイクル実行: worker={worker_id}")
    result = settlement_service.run_settlement_cycle(db, gateway, utcnow(), worker_id)
    return CycleResultResponse(**result.to_dict())


@router.post("/emergency-stop")
def update_emergency_stop(
    req: EmergencyStopRequest,
    db: Session = Depends(get_db),
    _=Depends(require_scheduler_token),
):
    """緊急停止フラグの設定・解除"""
    set_emergency_stop(req.active)
    log_event(
        db, "warning" if req.active else "info", "settlement_emergency_stop",
        "決済の緊急停止を設定" if req.active else "決済の緊急停止を解除",
        details={"active": req.active},
    )
    logger.warning(f"決済緊急停止フラグ: {req.active}")
    return {"success": True, "emergency_stop": req.active}


@router.get("/logs/{donation_id}")
def get_logs(
    donation_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _=Depends(require_scheduler_token),
):
    """定期寄付単位のイベントログ (新しい順)"""
    events = list_events(db, donation_id, limit)
    return [
        {
            "id": e.id,
            "level": e.level,
            "event_type": e.event_type,
            "message": e.message,
            "details": e.details,
            "created_at": e.created_at,
        }
        for e in events
    ]
