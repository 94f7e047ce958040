"""
Usage Ledger

Append-only record of venue check-ins. Eligibility screening reads it
through has_redemption; the redemption flow appends to it through
record_redemption. Any ledger row for a pass counts as usage, including
pending and cancelled check-ins.
"""
import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.exceptions import PassNotRedeemableError
from tourpass.models import PurchasedPass, PassStatus, VenueVisit, VisitStatus

logger = logging.getLogger(__name__)


async def has_redemption(db: AsyncSession, pass_ids: Iterable[int]) -> bool:
    """True when any visit row references one of the passes."""
    pass_ids = list(pass_ids)
    if not pass_ids:
        return False

    result = await db.execute(
        select(VenueVisit.id)
        .where(VenueVisit.purchased_pass_id.in_(pass_ids))
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def redeemed_pass_ids(db: AsyncSession, pass_ids: Iterable[int]) -> set:
    """Ids of the passes that have at least one visit row."""
    pass_ids = list(pass_ids)
    if not pass_ids:
        return set()

    result = await db.execute(
        select(VenueVisit.purchased_pass_id)
        .where(VenueVisit.purchased_pass_id.in_(pass_ids))
        .distinct()
    )
    return set(result.scalars().all())


async def record_redemption(db: AsyncSession, pass_id: int, business_id: int) -> VenueVisit:
    """
    Append a completed visit for an active pass.

    Increments usage_count and mirrors it into the legacy used_count
    counter. Suspended passes (refund in flight) and every other
    non-active status are refused.

    Raises:
        PassNotRedeemableError: pass missing or not active
    """
    purchased_pass = await db.get(PurchasedPass, pass_id)
    if purchased_pass is None:
        raise PassNotRedeemableError("Pass not found", details={"pass_id": pass_id})

    if purchased_pass.status != PassStatus.ACTIVE:
        raise PassNotRedeemableError(
            f"Pass cannot be redeemed while {PassStatus(purchased_pass.status).value}",
            details={"pass_id": pass_id, "status": PassStatus(purchased_pass.status).value},
        )

    visit = VenueVisit(
        purchased_pass_id=purchased_pass.id,
        customer_id=purchased_pass.customer_id,
        business_id=business_id,
        status=VisitStatus.COMPLETED.value,
    )
    db.add(visit)

    purchased_pass.usage_count = (purchased_pass.usage_count or 0) + 1
    # Reassign so the JSON column is flagged dirty
    metadata = dict(purchased_pass.usage_metadata or {})
    metadata["used_count"] = purchased_pass.usage_count
    purchased_pass.usage_metadata = metadata

    await db.flush()

    logger.info(
        f"Pass {purchased_pass.id} redeemed at business {business_id} "
        f"(usage_count: {purchased_pass.usage_count})"
    )
    return visit
