"""
Eligibility Guard

Decides whether an order may enter the refund workflow and, when it may,
creates the pending RefundRequest and suspends the order's passes.

Rejections happen before any write, in this order:
1. Order exists and belongs to the caller
2. Order is not already refunded or cancelled
3. Requested amount is positive and within the order total
4. No other request for the order is in flight or completed
5. No pass on the order has been used
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.audit_log import ACTION_REFUND_CREATED
from tourpass.core.config import settings
from tourpass.core.exceptions import (
    OrderNotFoundError,
    OrderNotRefundableError,
    RefundPreconditionError,
    DuplicateRefundError,
    PassesAlreadyUsedError,
)
from tourpass.models import (
    Order,
    OrderStatus,
    PurchasedPass,
    PassStatus,
    RefundRequest,
    RefundStatus,
    RefundReasonType,
    TimelineEventType,
    NotificationType,
)
from tourpass.models.order import NON_REFUNDABLE_ORDER_STATUSES
from tourpass.models.refund import IN_FLIGHT_REFUND_STATUSES
from tourpass.services import audit_service
from tourpass.services.context import RequestActor
from tourpass.services.pass_sync import PassStateSynchronizer, PassSyncResult
from tourpass.services.usage_ledger import has_redemption, redeemed_pass_ids

logger = logging.getLogger(__name__)

IN_FLIGHT_UNIQUE_INDEX = "uq_refund_requests_order_in_flight"

# Consumed passes can never be refunded
CONSUMED_PASS_STATUSES = (PassStatus.CANCELLED, PassStatus.EXPIRED, PassStatus.USED)

# Mid-refund or never started
USAGE_EXEMPT_PASS_STATUSES = (PassStatus.SUSPENDED, PassStatus.PENDING_ACTIVATION)


@dataclass
class RefundCreationResult:
    refund_request: RefundRequest
    suspension: PassSyncResult


def usage_blocker(purchased_pass: PurchasedPass) -> Optional[str]:
    """
    Why a pass blocks a refund, or None when it does not.

    Status is checked first, then usage_count, then the legacy counters
    in the metadata bag. The venue ledger is checked separately.
    """
    status = PassStatus(purchased_pass.status)
    if status in CONSUMED_PASS_STATUSES:
        return f"status {status.value}"
    if status in USAGE_EXEMPT_PASS_STATUSES:
        return None
    if (purchased_pass.usage_count or 0) > 0:
        return f"usage_count {purchased_pass.usage_count}"
    counter = purchased_pass.metadata_usage()
    if counter:
        return f"metadata {counter}"
    return None


def find_usage_blockers(passes: Iterable[PurchasedPass]) -> Dict[int, str]:
    """Map of pass id -> blocking reason for every pass that blocks a refund."""
    blockers = {}
    for purchased_pass in passes:
        reason = usage_blocker(purchased_pass)
        if reason:
            blockers[purchased_pass.id] = reason
    return blockers


def validate_refund_amount(amount, order_total, field_name: str = "requested_amount") -> Decimal:
    """Amount must be positive and no more than the order total."""
    amount = Decimal(str(amount))
    if amount <= 0:
        raise RefundPreconditionError(
            f"{field_name} must be greater than zero",
            details={field_name: str(amount)},
        )
    if amount > Decimal(str(order_total)):
        raise RefundPreconditionError(
            f"{field_name} cannot exceed the order total",
            details={field_name: str(amount), "order_total": str(order_total)},
        )
    return amount


class RefundEligibilityService:

    @staticmethod
    def generate_request_number() -> str:
        """Generate unique request number in format REF-YYYYMMDD-XXXXXXXX."""
        return (
            f"{settings.REFUND_REQUEST_PREFIX}-{datetime.now(timezone.utc).strftime('%Y%m%d')}"
            f"-{uuid.uuid4().hex[:8].upper()}"
        )

    @staticmethod
    async def get_owned_order(db: AsyncSession, order_id: int, customer_id: int) -> Order:
        order = await db.get(Order, order_id)
        if order is None or order.customer_id != customer_id:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    async def has_in_flight_request(db: AsyncSession, order_id: int) -> bool:
        result = await db.execute(
            select(RefundRequest.id)
            .where(
                RefundRequest.order_id == order_id,
                RefundRequest.status.in_(IN_FLIGHT_REFUND_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def check_pass_usage(db: AsyncSession, order_id: int):
        """
        Raise PassesAlreadyUsedError if any pass on the order was used.

        Raises:
            PassesAlreadyUsedError: a pass status, counter or venue visit
                shows usage
        """
        result = await db.execute(
            select(PurchasedPass).where(PurchasedPass.order_id == order_id)
        )
        passes = list(result.scalars().all())

        blockers = find_usage_blockers(passes)
        if blockers:
            logger.info(f"Refund blocked for order {order_id}: used passes {blockers}")
            raise PassesAlreadyUsedError(
                "Cannot request refund for passes that have already been used",
                pass_ids=sorted(blockers),
            )

        pass_ids = [p.id for p in passes]
        if await has_redemption(db, pass_ids):
            visited = await redeemed_pass_ids(db, pass_ids)
            logger.info(f"Refund blocked for order {order_id}: venue visits on passes {sorted(visited)}")
            raise PassesAlreadyUsedError(
                "Cannot request refund - passes have been used at venues",
                pass_ids=sorted(visited),
            )

    @staticmethod
    async def request_refund(
        db: AsyncSession,
        actor: RequestActor,
        order_id: int,
        reason_type: RefundReasonType,
        reason_text: str,
        requested_amount: Decimal,
    ) -> RefundCreationResult:
        """
        Create a pending refund request and suspend the order's passes.

        Suspension is best-effort: passes that fail to suspend are reported
        in the result and do not undo the request.

        Raises:
            OrderNotFoundError: order missing or owned by someone else
            OrderNotRefundableError: order already refunded or cancelled
            RefundPreconditionError: bad requested amount
            DuplicateRefundError: another request is in flight or completed
            PassesAlreadyUsedError: a pass on the order has been used
        """
        order = await RefundEligibilityService.get_owned_order(db, order_id, actor.actor_id)

        if order.status in NON_REFUNDABLE_ORDER_STATUSES:
            raise OrderNotRefundableError(
                NON_REFUNDABLE_ORDER_STATUSES[OrderStatus(order.status)],
                details={"order_id": order_id, "order_status": order.status},
            )

        requested_amount = validate_refund_amount(requested_amount, order.total_amount)

        if await RefundEligibilityService.has_in_flight_request(db, order_id):
            raise DuplicateRefundError(order_id)

        await RefundEligibilityService.check_pass_usage(db, order_id)

        refund_request = RefundRequest(
            request_number=RefundEligibilityService.generate_request_number(),
            order_id=order_id,
            customer_id=actor.actor_id,
            status=RefundStatus.PENDING,
            reason_type=RefundReasonType(reason_type),
            reason_text=reason_text,
            requested_amount=requested_amount,
        )
        try:
            async with db.begin_nested():
                db.add(refund_request)
                await db.flush()
        except IntegrityError as e:
            # Lost the race against a concurrent request for the same order
            if IN_FLIGHT_UNIQUE_INDEX in str(e.orig):
                raise DuplicateRefundError(order_id) from e
            raise

        logger.info(
            f"Created refund request {refund_request.request_number} for order {order_id} "
            f"(amount: {requested_amount})"
        )

        suspension = await PassStateSynchronizer.suspend(db, order_id)
        if not suspension.ok:
            logger.warning(
                f"Refund request {refund_request.request_number}: "
                f"{len(suspension.failed)} pass(es) could not be suspended"
            )

        details = {
            "refund_request_id": refund_request.id,
            "order_id": order_id,
            "reason_type": refund_request.reason_type.value,
            "requested_amount": str(requested_amount),
            "suspended_passes": suspension.succeeded,
        }
        await audit_service.record_activity(
            db,
            actor,
            ACTION_REFUND_CREATED,
            f"Created refund request {refund_request.request_number} for order {order.order_number}",
            details=details,
            resource_id=refund_request.id,
        )
        await audit_service.record_timeline_event(
            db,
            actor,
            order_id,
            TimelineEventType.REFUND_REQUESTED.value,
            "Refund requested",
            description=reason_text,
            details=details,
        )
        await audit_service.notify_admins(
            db,
            "New Refund Request",
            f"Refund request {refund_request.request_number} created for order #{order.order_number}",
            notification_type=NotificationType.WARNING,
            link=f"/admin/refund-requests/{refund_request.id}",
            details={"refund_request_id": refund_request.id, "order_id": order_id},
        )

        return RefundCreationResult(refund_request=refund_request, suspension=suspension)
