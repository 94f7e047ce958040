"""
Refund Review State Machine

Owns RefundRequest.status once a request exists.

    pending -> under_review -> approved -> completed
    pending -> approved | rejected
    under_review -> rejected

Every action stamps reviewed_by / reviewed_at and stores admin_notes when
given. Side effects:
- reject: suspended passes are reactivated (best-effort)
- mark_completed: remaining passes force-cancelled, then the order is
  marked refunded. If the order update fails the passes stay cancelled
  and RefundCompletionError is raised; re-running mark_completed converges.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tourpass.core.audit_log import (
    ACTION_REFUND_ASSIGN,
    ACTION_REFUND_APPROVE,
    ACTION_REFUND_REJECT,
    ACTION_REFUND_MARK_COMPLETED,
)
from tourpass.core.config import settings
from tourpass.core.exceptions import (
    RefundPreconditionError,
    RefundNotFoundError,
    RefundPermissionError,
    InvalidRefundTransitionError,
    RefundCompletionError,
)
from tourpass.models import (
    Order,
    OrderStatus,
    PaymentStatus,
    RefundRequest,
    RefundStatus,
    RefundMethod,
    ReviewAction,
    TimelineEventType,
)
from tourpass.models.refund import (
    REVIEW_ACTION_SOURCE_STATES,
    REVIEW_ACTION_STATE_ERRORS,
)
from tourpass.services import audit_service
from tourpass.services.context import RequestActor
from tourpass.services.eligibility import validate_refund_amount
from tourpass.services.pass_sync import PassStateSynchronizer, PassSyncResult

logger = logging.getLogger(__name__)

ACTION_VERBS = {
    ReviewAction.ASSIGN: "assigned",
    ReviewAction.APPROVE: "approved",
    ReviewAction.REJECT: "rejected",
    ReviewAction.MARK_COMPLETED: "marked as completed",
}

ACTIVITY_ACTIONS = {
    ReviewAction.ASSIGN: ACTION_REFUND_ASSIGN,
    ReviewAction.APPROVE: ACTION_REFUND_APPROVE,
    ReviewAction.REJECT: ACTION_REFUND_REJECT,
    ReviewAction.MARK_COMPLETED: ACTION_REFUND_MARK_COMPLETED,
}

TIMELINE_EVENTS = {
    ReviewAction.APPROVE: (TimelineEventType.REFUND_APPROVED, "Refund approved"),
    ReviewAction.REJECT: (TimelineEventType.REFUND_REJECTED, "Refund rejected"),
    ReviewAction.MARK_COMPLETED: (TimelineEventType.REFUND_COMPLETED, "Refund completed"),
}


@dataclass
class ReviewOutcome:
    refund_request: RefundRequest
    action: ReviewAction
    previous_status: RefundStatus
    reactivation: Optional[PassSyncResult] = None
    cancelled_passes: Optional[int] = None

    @property
    def message(self) -> str:
        return f"Refund request {ACTION_VERBS[self.action]} successfully"


def parse_review_action(action: Any) -> ReviewAction:
    try:
        return ReviewAction(action)
    except ValueError:
        raise RefundPreconditionError("Invalid action", details={"action": action})


def check_source_state(refund_request: RefundRequest, action: ReviewAction) -> RefundStatus:
    """
    Validate that the action may start from the request's current status.

    Raises:
        InvalidRefundTransitionError: naming the required source state(s)
    """
    current = RefundStatus(refund_request.status)
    allowed = REVIEW_ACTION_SOURCE_STATES[action]
    if current not in allowed:
        raise InvalidRefundTransitionError(
            REVIEW_ACTION_STATE_ERRORS[action],
            current_status=current.value,
            allowed_statuses=[s.value for s in allowed],
        )
    return current


def simulated_transaction_id() -> str:
    """Settlement reference; no payment gateway is called."""
    return f"SIM-{uuid.uuid4().hex[:16].upper()}"


class RefundReviewService:

    @staticmethod
    def _stamp_review(refund_request: RefundRequest, actor: RequestActor, admin_notes: Optional[str]):
        refund_request.reviewed_by = actor.actor_id
        refund_request.reviewed_at = datetime.now(timezone.utc)
        if admin_notes:
            refund_request.admin_notes = admin_notes

    @staticmethod
    async def assign(
        db: AsyncSession,
        actor: RequestActor,
        refund_request: RefundRequest,
        admin_notes: Optional[str] = None,
    ) -> RefundRequest:
        """Take a pending request under review."""
        check_source_state(refund_request, ReviewAction.ASSIGN)

        now = datetime.now(timezone.utc)
        refund_request.assigned_to = actor.actor_id
        refund_request.assigned_at = now
        refund_request.status = RefundStatus.UNDER_REVIEW
        RefundReviewService._stamp_review(refund_request, actor, admin_notes)
        await db.flush()
        return refund_request

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: RequestActor,
        refund_request: RefundRequest,
        refund_method: Optional[RefundMethod] = None,
        refund_amount: Optional[Decimal] = None,
        admin_notes: Optional[str] = None,
    ) -> RefundRequest:
        """
        Approve a pending or under-review request.

        refund_method defaults to the configured method, refund_amount to
        the requested amount. An explicit amount must be positive and
        within the order total.
        """
        check_source_state(refund_request, ReviewAction.APPROVE)

        method = RefundMethod(refund_method or settings.DEFAULT_REFUND_METHOD)
        if refund_amount is None:
            amount = Decimal(str(refund_request.requested_amount))
        else:
            order = await db.get(Order, refund_request.order_id)
            order_total = order.total_amount if order is not None else refund_request.requested_amount
            amount = validate_refund_amount(refund_amount, order_total, field_name="refund_amount")

        refund_request.refund_method = method
        refund_request.refund_amount = amount
        refund_request.status = RefundStatus.APPROVED
        RefundReviewService._stamp_review(refund_request, actor, admin_notes)
        await db.flush()
        return refund_request

    @staticmethod
    async def reject(
        db: AsyncSession,
        actor: RequestActor,
        refund_request: RefundRequest,
        rejection_reason: Optional[str],
        admin_notes: Optional[str] = None,
    ) -> PassSyncResult:
        """
        Reject a pending or under-review request and reactivate its passes.

        The reason is checked before anything is written.
        """
        check_source_state(refund_request, ReviewAction.REJECT)
        if not rejection_reason or not rejection_reason.strip():
            raise RefundPreconditionError("Rejection reason is required")

        refund_request.status = RefundStatus.REJECTED
        refund_request.rejection_reason = rejection_reason
        RefundReviewService._stamp_review(refund_request, actor, admin_notes)
        await db.flush()

        reactivation = await PassStateSynchronizer.reactivate(db, refund_request.order_id)
        if not reactivation.ok:
            logger.warning(
                f"Refund request {refund_request.request_number}: "
                f"{len(reactivation.failed)} pass(es) could not be reactivated"
            )
        return reactivation

    @staticmethod
    async def _mark_order_refunded(db: AsyncSession, order_id: int):
        try:
            async with db.begin_nested():
                order = await db.get(Order, order_id)
                if order is None:
                    raise RefundCompletionError(
                        "Order not found while completing refund",
                        details={"order_id": order_id},
                    )
                order.status = OrderStatus.REFUNDED.value
                order.payment_status = PaymentStatus.REFUNDED.value
                await db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark order {order_id} refunded after cancelling passes: {e}")
            raise RefundCompletionError(
                "Passes were cancelled but the order could not be marked refunded. Retry mark_completed.",
                details={"order_id": order_id},
            ) from e

    @staticmethod
    async def mark_completed(
        db: AsyncSession,
        actor: RequestActor,
        refund_request: RefundRequest,
        admin_notes: Optional[str] = None,
    ) -> int:
        """
        Finish an approved refund.

        Re-running on a completed request repeats both idempotent steps
        and keeps the original refund_processed_at.

        Returns:
            Number of passes cancelled by this call

        Raises:
            PassCancellationError: nothing changed
            RefundCompletionError: passes cancelled, order not updated
        """
        check_source_state(refund_request, ReviewAction.MARK_COMPLETED)

        cancelled = await PassStateSynchronizer.force_cancel_remaining(db, refund_request.order_id)
        await RefundReviewService._mark_order_refunded(db, refund_request.order_id)

        refund_request.status = RefundStatus.COMPLETED
        if refund_request.refund_processed_at is None:
            refund_request.refund_processed_at = datetime.now(timezone.utc)
        if not refund_request.refund_transaction_id:
            refund_request.refund_transaction_id = simulated_transaction_id()
        RefundReviewService._stamp_review(refund_request, actor, admin_notes)
        await db.flush()

        logger.info(
            f"Refund {refund_request.request_number} completed "
            f"(order {refund_request.order_id}, {cancelled} pass(es) cancelled, "
            f"transaction {refund_request.refund_transaction_id})"
        )
        return cancelled

    @staticmethod
    async def get_refund_request(db: AsyncSession, refund_request_id: int) -> RefundRequest:
        refund_request = await db.get(RefundRequest, refund_request_id)
        if refund_request is None:
            raise RefundNotFoundError(refund_request_id)
        return refund_request

    @staticmethod
    async def review(
        db: AsyncSession,
        actor: RequestActor,
        refund_request_id: int,
        action: Any,
        rejection_reason: Optional[str] = None,
        refund_method: Optional[RefundMethod] = None,
        refund_amount: Optional[Decimal] = None,
        admin_notes: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Apply one admin review action to a refund request.

        Raises:
            RefundPermissionError: caller is not an admin
            RefundNotFoundError: no such request
            RefundPreconditionError: unknown action or missing field
            InvalidRefundTransitionError: wrong source state
            PassCancellationError / RefundCompletionError: mark_completed step failed
        """
        if not actor.is_admin:
            raise RefundPermissionError("Admin access required")

        review_action = parse_review_action(action)
        refund_request = await RefundReviewService.get_refund_request(db, refund_request_id)
        previous_status = RefundStatus(refund_request.status)

        outcome = ReviewOutcome(
            refund_request=refund_request,
            action=review_action,
            previous_status=previous_status,
        )

        if review_action == ReviewAction.ASSIGN:
            await RefundReviewService.assign(db, actor, refund_request, admin_notes)
        elif review_action == ReviewAction.APPROVE:
            await RefundReviewService.approve(
                db, actor, refund_request,
                refund_method=refund_method,
                refund_amount=refund_amount,
                admin_notes=admin_notes,
            )
        elif review_action == ReviewAction.REJECT:
            outcome.reactivation = await RefundReviewService.reject(
                db, actor, refund_request, rejection_reason, admin_notes
            )
        else:
            outcome.cancelled_passes = await RefundReviewService.mark_completed(
                db, actor, refund_request, admin_notes
            )

        logger.info(
            f"Refund {refund_request.request_number} {review_action.value}: "
            f"{previous_status.value} -> {RefundStatus(refund_request.status).value}"
        )
        await RefundReviewService._record_audit(db, actor, outcome)
        return outcome

    @staticmethod
    async def _record_audit(db: AsyncSession, actor: RequestActor, outcome: ReviewOutcome):
        refund_request = outcome.refund_request
        details: Dict[str, Any] = {
            "refund_request_id": refund_request.id,
            "order_id": refund_request.order_id,
            "action": outcome.action.value,
            "previous_status": outcome.previous_status.value,
            "new_status": RefundStatus(refund_request.status).value,
        }
        if outcome.reactivation is not None:
            details["reactivated_passes"] = outcome.reactivation.succeeded
            details["reactivation_failures"] = outcome.reactivation.failed
        if outcome.cancelled_passes is not None:
            details["cancelled_passes"] = outcome.cancelled_passes
        if outcome.action == ReviewAction.REJECT:
            details["rejection_reason"] = refund_request.rejection_reason
        if outcome.action == ReviewAction.APPROVE:
            details["refund_amount"] = str(refund_request.refund_amount)
            details["refund_method"] = RefundMethod(refund_request.refund_method).value

        await audit_service.record_activity(
            db,
            actor,
            ACTIVITY_ACTIONS[outcome.action],
            f"Refund request {refund_request.request_number} {ACTION_VERBS[outcome.action]}",
            details=details,
            resource_id=refund_request.id,
        )

        timeline = TIMELINE_EVENTS.get(outcome.action)
        if timeline:
            event_type, title = timeline
            await audit_service.record_timeline_event(
                db,
                actor,
                refund_request.order_id,
                event_type.value,
                title,
                description=refund_request.rejection_reason if outcome.action == ReviewAction.REJECT else None,
                details=details,
            )
