"""定期寄付ルーター: 作成・参照・更新・一時停止・再開・解約・決済実績"""
from typing import Optional
from fastapi import APIRouter, Depends, Request, Query
from sqlalchemy.orm import Session

from giving.core.database import get_db
from giving.core.exceptions import NotFound, Forbidden, ValidationError
from giving.core.rate_limit import limiter, CREATE_RATE_LIMIT, MUTATION_RATE_LIMIT
from giving.models.recurring_donation import RecurringDonation, STATUSES
from giving.schemas.recurring_donation import (
    RecurringDonationCreateRequest, RecurringDonationUpdateRequest, CancelRequest,
    RecurringDonationResponse, RecurringDonationPage, CreatedResponse, ActionResponse,
    SettlementRecordResponse,
)
from giving.services import recurring_donation_service, subscription_store, settlement_store, donor_service
from giving.routers.deps import require_user_email
from giving.core.logging import get_logger

router = APIRouter(prefix="/api/recurring-donations", tags=["recurring-donations"])
logger = get_logger(__name__)


def _get_owned(db: Session, donation_id: int, user_email: str) -> RecurringDonation:
    """所有者本人の定期寄付のみ取得 (他人のものは Forbidden)"""
    donation = subscription_store.get_by_id(db, donation_id)
    if not donation:
        raise NotFound("Recurring donation not found")
    if not donor_service.is_owner(db, donation.donor_id, user_email):
        logger.warning(f"所有者以外の操作を拒否: id={donation_id}, user_email={user_email}")
        raise Forbidden("You do not own this recurring donation")
    return donation


@router.post("", status_code=201, response_model=CreatedResponse)
@limiter.limit(CREATE_RATE_LIMIT)
def create_recurring_donation(
    request: Request,
    req: RecurringDonationCreateRequest,
    user_email: str = Depends(require_user_email),
    db: Session = Depends(get_db),
):
    """定期寄付作成"""
    donor = donor_service.get_donor_by_email(db, user_email)
    if not donor:
        raise NotFound("Donor not found")

    donation = recurring_donation_service.create_subscription(
        db,
        donor_id=donor.id,
        amount=req.amount,
        frequency=req.frequency,
        start_date=req.start_date,
        end_date=req.end_date,
        payment_token=req.payment_token,
        pay_transaction_fee=req.pay_transaction_fee,
        transaction_fee_amount=req.transaction_fee_amount,
        message=req.donation_message,
        referral_code=req.referral_code,
        campaign_code=req.campaign_code,
        campaign_id=req.campaign_id,
        created_by=user_email,
    )
    return CreatedResponse(id=donation.id)


@router.get("", response_model=RecurringDonationPage)
def list_recurring_donations(
    user_email: Optional[str] = Query(default=None, max_length=255),
    status: Optional[str] = None,
    donor_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=subscription_store.MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    """定期寄付一覧 (user_email / status / donor_id のいずれかで絞り込み)"""
    if user_email:
        result = subscription_store.list_by_user_email(db, user_email.strip(), page, page_size)
    elif donor_id is not None:
        result = subscription_store.list_by_donor(db, donor_id, page, page_size)
    elif status:
        if status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        result = subscription_store.list_by_status(db, status, page, page_size)
    else:
        raise ValidationError("One of user_email, donor_id or status is required")

    return RecurringDonationPage(
        items=[RecurringDonationResponse.model_validate(d) for d in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/{donation_id}", response_model=RecurringDonationResponse)
def get_recurring_donation(donation_id: int, db: Session = Depends(get_db)):
    donation = subscription_store.get_by_id(db, donation_id)
    if not donation:
        raise NotFound("Recurring donation not found")
    return RecurringDonationResponse.model_validate(donation)


@router.put("/{donation_id}", response_model=RecurringDonationResponse)
@limiter.limit(MUTATION_RATE_LIMIT)
def update_recurring_donation(
    request: Request,
    donation_id: int,
    req: RecurringDonationUpdateRequest,
    user_email: str = Depends(require_user_email),
    db: Session = Depends(get_db),
):
    """定期寄付更新 (指定項目のみ)"""
    _get_owned(db, donation_id, user_email)
    donation = recurring_donation_service.update_subscription(
        db,
        donation_id,
        actor=user_email,
        amount=req.amount,
        payment_token=req.payment_token,
        pay_transaction_fee=req.pay_transaction_fee,
        transaction_fee_amount=req.transaction_fee_amount,
        message=req.donation_message,
        end_date=req.end_date,
    )
    return RecurringDonationResponse.model_validate(donation)


@router.post("/{donation_id}/pause", response_model=ActionResponse)
@limiter.limit(MUTATION_RATE_LIMIT)
def pause_recurring_donation(
    request: Request,
    donation_id: int,
    user_email: str = Depends(require_user_email),
    db: Session = Depends(get_db),
):
    _get_owned(db, donation_id, user_email)
    recurring_donation_service.pause(db, donation_id, actor=user_email)
    return ActionResponse(success=True, message="Recurring donation paused")


@router.post("/{donation_id}/resume", response_model=ActionResponse)
@limiter.limit(MUTATION_RATE_LIMIT)
def resume_recurring_donation(
    request: Request,
    donation_id: int,
    user_email: str = Depends(require_user_email),
    db: Session = Depends(get_db),
):
    _get_owned(db, donation_id, user_email)
    recurring_donation_service.resume(db, donation_id, actor=user_email)
    return ActionResponse(success=True, message="Recurring donation resumed")


@router.post("/{donation_id}/cancel", response_model=ActionResponse)
@limiter.limit(MUTATION_RATE_LIMIT)
def cancel_recurring_donation(
    request: Request,
    donation_id: int,
    req: Optional[CancelRequest] = None,
    user_email: str = Depends(require_user_email),
    db: Session = Depends(get_db),
):
    """解約 (取り消し不可)"""
    _get_owned(db, donation_id, user_email)
    reason = req.reason if req else None
    recurring_donation_service.cancel(db, donation_id, actor=user_email, reason=reason)
    return ActionResponse(success=True, message="Recurring donation cancelled")


@router.get("/{donation_id}/settlements", response_model=list[SettlementRecordResponse])
def list_settlements(donation_id: int, db: Session = Depends(get_db)):
    """決済実績一覧 (予定日昇順)"""
    if not subscription_store.get_by_id(db, donation_id):
        raise NotFound("Recurring donation not found")
    records = settlement_store.list_for_subscription(db, donation_id)
    return [SettlementRecordResponse.model_validate(r) for r in records]
