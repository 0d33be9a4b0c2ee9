from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime
from decimal import Decimal


class RecurringDonationCreateRequest(BaseModel):
    amount: Decimal
    frequency: Literal["monthly", "annually"]
    start_date: datetime
    end_date: Optional[datetime] = None
    payment_token: str
    pay_transaction_fee: bool = False
    transaction_fee_amount: Optional[Decimal] = None
    donation_message: Optional[str] = Field(default=None, max_length=1000)
    referral_code: Optional[str] = Field(default=None, max_length=100)
    campaign_code: Optional[str] = Field(default=None, max_length=100)
    campaign_id: Optional[int] = None


class RecurringDonationUpdateRequest(BaseModel):
    # 未指定の項目は変更しない
    amount: Optional[Decimal] = None
    payment_token: Optional[str] = None
    pay_transaction_fee: Optional[bool] = None
    transaction_fee_amount: Optional[Decimal] = None
    donation_message: Optional[str] = Field(default=None, max_length=1000)
    end_date: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class RecurringDonationResponse(BaseModel):
    """定期寄付のスナップショット (決済トークンは含めない)"""
    id: int
    donor_id: int
    amount: Decimal
    currency: str
    frequency: str
    status: str
    start_date: datetime
    end_date: Optional[datetime] = None
    next_due_date: datetime
    last_processed_date: Optional[datetime] = None
    successful_charge_count: int
    failed_attempt_count: int
    last_error_message: Optional[str] = None
    pay_transaction_fee: bool
    transaction_fee_amount: Decimal
    donation_message: Optional[str] = None
    referral_code: Optional[str] = None
    campaign_code: Optional[str] = None
    campaign_id: Optional[int] = None
    cancelled_date: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RecurringDonationPage(BaseModel):
    items: list[RecurringDonationResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class CreatedResponse(BaseModel):
    id: int


class ActionResponse(BaseModel):
    success: bool
    message: str


class SettlementRecordResponse(BaseModel):
    id: int
    recurring_donation_id: int
    amount: Decimal
    pay_transaction_fee: bool
    transaction_fee_amount: Decimal
    charged_amount: Decimal
    currency: str
    frequency: str
    donation_message: Optional[str] = None
    referral_code: Optional[str] = None
    campaign_code: Optional[str] = None
    campaign_id: Optional[int] = None
    gateway_transaction_id: str
    payment_transaction_id: Optional[int] = None
    due_date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class CycleResultResponse(BaseModel):
    attempted: int
    succeeded: int
    failed: int
    skipped: int
    expired: int
