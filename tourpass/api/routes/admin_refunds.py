"""
Admin Refund API Routes

Endpoints for admins to:
- List and filter all refund requests
- Assign, approve, reject and complete refund requests

Completing a refund cancels the order's remaining passes before the order
is marked refunded. If the order update fails, the cancellation is still
committed and the error is returned; retrying mark_completed converges.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.config import settings
from tourpass.core.database import get_db
from tourpass.core.exceptions import RefundCompletionError
from tourpass.api.deps import get_admin_actor
from tourpass.api.routes.refunds import format_refund_response, format_sync_response
from tourpass.schemas.refund import (
    RefundReview,
    RefundReviewResponse,
    RefundDetailResponse,
    RefundListResponse,
)
from tourpass.services import refund_queries
from tourpass.services.context import RequestActor
from tourpass.services.refund_review import RefundReviewService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/refund-requests", tags=["admin-refunds"])


@router.get("", response_model=RefundListResponse)
async def list_refund_requests(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=settings.REFUND_LIST_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_admin_actor),
):
    """
    List all refund requests with optional status filter.

    status=all (or no status) returns every request.
    """
    refunds, total = await refund_queries.list_refunds(db, status, limit, offset)
    return RefundListResponse(
        refund_requests=[format_refund_response(r) for r in refunds],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{refund_id}", response_model=RefundDetailResponse)
async def get_refund_request(
    refund_id: int,
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_admin_actor),
):
    refund = await RefundReviewService.get_refund_request(db, refund_id)
    return RefundDetailResponse(refund_request=format_refund_response(refund))


@router.patch("/{refund_id}", response_model=RefundReviewResponse)
async def review_refund_request(
    refund_id: int,
    payload: RefundReview,
    db: AsyncSession = Depends(get_db),
    actor: RequestActor = Depends(get_admin_actor),
):
    """Apply a review action: assign, approve, reject or mark_completed."""
    try:
        outcome = await RefundReviewService.review(
            db,
            actor,
            refund_id,
            payload.action,
            rejection_reason=payload.rejection_reason,
            refund_method=payload.refund_method,
            refund_amount=payload.refund_amount,
            admin_notes=payload.admin_notes,
        )
    except RefundCompletionError:
        # Keep the cancelled passes; a retry finishes the order update
        await db.commit()
        logger.error(f"Refund {refund_id} left with cancelled passes and unrefunded order")
        raise

    await db.commit()

    return RefundReviewResponse(
        refund_request=format_refund_response(outcome.refund_request),
        message=outcome.message,
        reactivation=format_sync_response(outcome.reactivation) if outcome.reactivation else None,
        cancelled_passes=outcome.cancelled_passes,
    )
