"""
Customer Refund API Routes

Endpoints for customers to:
- Request a refund for one of their orders (passes are suspended immediately)
- List and view their own refund requests
"""
import logging
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.config import settings
from tourpass.core.database import get_db
from tourpass.core.rate_limit import limiter
from tourpass.api.deps import get_customer_actor
from tourpass.models import RefundRequest
from tourpass.schemas.refund import (
    RefundCreate,
    RefundCreateResponse,
    RefundDetailResponse,
    RefundListResponse,
    RefundRequestResponse,
    PassSyncResponse,
)
from tourpass.services import refund_queries
from tourpass.services.context import RequestActor
from tourpass.services.eligibility import RefundEligibilityService
from tourpass.services.pass_sync import PassSyncResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/refunds", tags=["refunds"])

REFUND_SUBMITTED_MESSAGE = (
    "Refund request submitted successfully. We will review it within 2-3 business days."
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(field):
    return field.value if hasattr(field, "value") else field


def format_refund_response(refund: RefundRequest) -> RefundRequestResponse:
    """Format refund request for API response."""
    return RefundRequestResponse(
        id=refund.id,
        request_number=refund.request_number,
        order_id=refund.order_id,
        customer_id=refund.customer_id,
        status=_value(refund.status),
        reason_type=_value(refund.reason_type),
        reason_text=refund.reason_text,
        requested_amount=float(refund.requested_amount),
        refund_method=_value(refund.refund_method),
        refund_amount=float(refund.refund_amount) if refund.refund_amount is not None else None,
        rejection_reason=refund.rejection_reason,
        admin_notes=refund.admin_notes,
        assigned_to=refund.assigned_to,
        assigned_at=refund.assigned_at,
        reviewed_by=refund.reviewed_by,
        reviewed_at=refund.reviewed_at,
        refund_processed_at=refund.refund_processed_at,
        refund_transaction_id=refund.refund_transaction_id,
        created_at=refund.created_at,
        updated_at=refund.updated_at,
    )


def format_sync_response(result: PassSyncResult) -> PassSyncResponse:
    return PassSyncResponse(
        succeeded=result.succeeded,
        failed=result.failed,
        errors={str(k): v for k, v in result.errors.items()},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=RefundCreateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_REFUND_CREATE)
async def create_refund_request(
    request: Request,
    payload: RefundCreate,
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_customer_actor),
):
    """
    Request a refund for an order.

    Fails without side effects when the order is not refundable, a request
    is already in flight, or any pass has been used.
    """
    created = await RefundEligibilityService.request_refund(
        db,
        actor,
        order_id=payload.order_id,
        reason_type=payload.reason_type,
        reason_text=payload.reason_text,
        requested_amount=payload.requested_amount,
    )
    await db.commit()

    return RefundCreateResponse(
        refund_request=format_refund_response(created.refund_request),
        suspension=format_sync_response(created.suspension),
        message=REFUND_SUBMITTED_MESSAGE,
    )


@router.get("", response_model=RefundListResponse)
async def list_my_refund_requests(
    limit: int = Query(50, ge=1, le=settings.REFUND_LIST_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_customer_actor),
):
    """List the caller's refund requests, newest first."""
    refunds, total = await refund_queries.list_customer_refunds(db, actor.actor_id, limit, offset)
    return RefundListResponse(
        refund_requests=[format_refund_response(r) for r in refunds],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{refund_id}", response_model=RefundDetailResponse)
async def get_my_refund_request(
    refund_id: int,
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_customer_actor),
):
    """Get one of the caller's refund requests."""
    refund = await refund_queries.get_customer_refund(db, actor.actor_id, refund_id)
    return RefundDetailResponse(refund_request=format_refund_response(refund))
