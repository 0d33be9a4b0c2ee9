"""システムログ (業務イベントのDB記録)"""
from datetime import datetime
from sqlalchemy.orm import Session

from giving.core.clock import utcnow
from giving.models.system_log import SystemLog


def log_event(
    db: Session,
    level: str,
    event_type: str,
    message: str,
    recurring_donation_id: int = None,
    donor_id: int = None,
    details: dict = None,
    now: datetime = None,
    commit: bool = True,
) -> SystemLog:
    """システムログ記録 (commit=False なら呼び出し側のトランザクションに含める)"""
    log = SystemLog(
        level=level,
        event_type=event_type,
        recurring_donation_id=recurring_donation_id,
        donor_id=donor_id,
        message=message,
        details=details,
        created_at=now or utcnow(),
    )
    db.add(log)
    if commit:
        db.commit()
    return log


def list_events(db: Session, recurring_donation_id: int, limit: int = 50) -> list[SystemLog]:
    return (
        db.query(SystemLog)
        .filter(SystemLog.recurring_donation_id == recurring_donation_id)
        .order_by(SystemLog.created_at.desc(), SystemLog.id.desc())
        .limit(limit)
        .all()
    )
