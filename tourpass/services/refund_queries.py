"""
Read-side queries for refund requests.
"""
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.exceptions import RefundNotFoundError, RefundPreconditionError
from tourpass.models import RefundRequest, RefundStatus


def parse_status_filter(status: Optional[str]) -> Optional[RefundStatus]:
    """None and "all" mean no filter."""
    if not status or status == "all":
        return None
    try:
        return RefundStatus(status)
    except ValueError:
        raise RefundPreconditionError(f"Invalid status: {status}", details={"status": status})


async def list_customer_refunds(
    db: AsyncSession,
    customer_id: int,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[RefundRequest], int]:
    filters = [RefundRequest.customer_id == customer_id]

    total = (await db.execute(
        select(func.count(RefundRequest.id)).where(*filters)
    )).scalar() or 0

    result = await db.execute(
        select(RefundRequest)
        .where(*filters)
        .order_by(RefundRequest.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_customer_refund(db: AsyncSession, customer_id: int, refund_request_id: int) -> RefundRequest:
    result = await db.execute(
        select(RefundRequest).where(
            RefundRequest.id == refund_request_id,
            RefundRequest.customer_id == customer_id,
        )
    )
    refund_request = result.scalar_one_or_none()
    if refund_request is None:
        raise RefundNotFoundError(refund_request_id)
    return refund_request


async def list_refunds(
    db: AsyncSession,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[RefundRequest], int]:
    """All refund requests, newest first, with an exact total for the filter."""
    status_filter = parse_status_filter(status)
    filters = []
    if status_filter is not None:
        filters.append(RefundRequest.status == status_filter)

    total = (await db.execute(
        select(func.count(RefundRequest.id)).where(*filters)
    )).scalar() or 0

    result = await db.execute(
        select(RefundRequest)
        .where(*filters)
        .order_by(RefundRequest.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total
