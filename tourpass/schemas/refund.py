"""
Refund request schemas
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from tourpass.models import RefundReasonType, RefundMethod


class RefundCreate(BaseModel):
    order_id: int
    reason_type: RefundReasonType
    reason_text: str = Field(..., min_length=1, max_length=2000)
    requested_amount: Decimal = Field(..., max_digits=12, decimal_places=2)


class RefundReview(BaseModel):
    """Admin review action. Unknown actions are rejected by the engine."""
    action: str
    rejection_reason: Optional[str] = None
    refund_method: Optional[RefundMethod] = None
    refund_amount: Optional[Decimal] = Field(None, max_digits=12, decimal_places=2)
    admin_notes: Optional[str] = None


class RefundRequestResponse(BaseModel):
    id: int
    request_number: str
    order_id: int
    customer_id: Optional[int]
    status: str
    reason_type: str
    reason_text: str
    requested_amount: float
    refund_method: Optional[str]
    refund_amount: Optional[float]
    rejection_reason: Optional[str]
    admin_notes: Optional[str]
    assigned_to: Optional[int]
    assigned_at: Optional[datetime]
    reviewed_by: Optional[int]
    reviewed_at: Optional[datetime]
    refund_processed_at: Optional[datetime]
    refund_transaction_id: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class PassSyncResponse(BaseModel):
    succeeded: List[int]
    failed: List[int]
    errors: Dict[str, str] = {}


class RefundCreateResponse(BaseModel):
    success: bool = True
    refund_request: RefundRequestResponse
    suspension: PassSyncResponse
    message: str


class RefundReviewResponse(BaseModel):
    success: bool = True
    refund_request: RefundRequestResponse
    message: str
    reactivation: Optional[PassSyncResponse] = None
    cancelled_passes: Optional[int] = None


class RefundDetailResponse(BaseModel):
    success: bool = True
    refund_request: RefundRequestResponse


class RefundListResponse(BaseModel):
    success: bool = True
    refund_requests: List[RefundRequestResponse]
    total: int
    limit: int
    offset: int
