from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime

from jobcredits.models.credit_unit import CreditType


class CheckoutSessionRequest(BaseModel):
    pack_key: str
    add_ons: List[str] = []
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class AddOnCheckoutRequest(BaseModel):
    add_on_key: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class UpsellCheckoutRequest(BaseModel):
    job_id: int
    social_media_shoutout: bool = False
    placement_bump: bool = False
    upsell_bundle: bool = False
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    kind: str
    record_id: int
    session_id: str
    url: Optional[str] = None
    total_amount_cents: int
    credits: Optional[Dict[str, int]] = None


class ConfirmSessionRequest(BaseModel):
    session_id: str = Field(min_length=1)


class FulfillmentResponse(BaseModel):
    status: str
    kind: str
    record_id: int
    credits_issued: Dict[str, int] = {}
    grant_id: Optional[int] = None
    job_id: Optional[int] = None


class CreditUnitResponse(BaseModel):
    id: int
    credit_type: CreditType
    purchase_id: int
    is_used: bool
    used_at: Optional[datetime] = None
    used_for_job_id: Optional[int] = None
    issued_at: Optional[datetime] = None
    expires_at: datetime

    class Config:
        from_attributes = True


class AddOnGrantResponse(BaseModel):
    id: int
    add_on_key: str
    purchase_id: int
    is_active: bool
    price_paid_cents: int = 0
    purchased_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    applied_job_ids: List[int] = []

    class Config:
        from_attributes = True


class AdminCreditAssignRequest(BaseModel):
    user_id: str = Field(min_length=1)
    credit_type: str = "job_post"
    amount: int = Field(gt=0, le=1000)
    reason: Optional[str] = None
    expires_days: Optional[int] = Field(default=None, gt=0)


class SweepRequest(BaseModel):
    older_than_days: Optional[int] = Field(default=None, gt=0)
