"""
Tests for the refund review state machine.
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tests.factories import make_order, make_pass, make_refund, ADMIN_ID, ORDER_ID, CUSTOMER_ID
from tourpass.core.exceptions import (
    RefundPreconditionError,
    RefundNotFoundError,
    RefundPermissionError,
    InvalidRefundTransitionError,
    PassCancellationError,
    RefundCompletionError,
)
from tourpass.models import (
    ActivityLog,
    OrderTimelineEvent,
    PassStatus,
    RefundStatus,
    RefundMethod,
    RefundReasonType,
    ReviewAction,
)
from tourpass.services.context import RequestActor
from tourpass.services.eligibility import RefundEligibilityService
from tourpass.services.refund_review import (
    RefundReviewService,
    check_source_state,
    parse_review_action,
)

LIVE_STATUSES = {PassStatus.ACTIVE, PassStatus.SUSPENDED, PassStatus.PENDING, PassStatus.PENDING_ACTIVATION}


class TestSourceStates:

    @pytest.mark.parametrize("action,status,allowed", [
        (ReviewAction.ASSIGN, RefundStatus.PENDING, True),
        (ReviewAction.ASSIGN, RefundStatus.UNDER_REVIEW, False),
        (ReviewAction.ASSIGN, RefundStatus.APPROVED, False),
        (ReviewAction.APPROVE, RefundStatus.PENDING, True),
        (ReviewAction.APPROVE, RefundStatus.UNDER_REVIEW, True),
        (ReviewAction.APPROVE, RefundStatus.REJECTED, False),
        (ReviewAction.APPROVE, RefundStatus.APPROVED, False),
        (ReviewAction.REJECT, RefundStatus.PENDING, True),
        (ReviewAction.REJECT, RefundStatus.UNDER_REVIEW, True),
        (ReviewAction.REJECT, RefundStatus.APPROVED, False),
        (ReviewAction.REJECT, RefundStatus.COMPLETED, False),
        (ReviewAction.MARK_COMPLETED, RefundStatus.APPROVED, True),
        (ReviewAction.MARK_COMPLETED, RefundStatus.COMPLETED, True),
        (ReviewAction.MARK_COMPLETED, RefundStatus.PENDING, False),
        (ReviewAction.MARK_COMPLETED, RefundStatus.UNDER_REVIEW, False),
        (ReviewAction.MARK_COMPLETED, RefundStatus.CANCELLED, False),
    ])
    def test_allowed_source_states(self, action, status, allowed):
        refund = make_refund(status)
        if allowed:
            assert check_source_state(refund, action) == status
        else:
            with pytest.raises(InvalidRefundTransitionError):
                check_source_state(refund, action)

    @pytest.mark.parametrize("action,message", [
        (ReviewAction.ASSIGN, "Can only assign pending requests"),
        (ReviewAction.APPROVE, "Can only approve pending/under review requests"),
        (ReviewAction.REJECT, "Can only reject pending/under review requests"),
        (ReviewAction.MARK_COMPLETED, "Can only mark approved requests as completed"),
    ])
    def test_error_names_required_state(self, action, message):
        with pytest.raises(InvalidRefundTransitionError) as exc_info:
            check_source_state(make_refund(RefundStatus.CANCELLED), action)
        assert exc_info.value.message == message
        assert exc_info.value.details["current_status"] == "cancelled"

    def test_unknown_action(self):
        with pytest.raises(RefundPreconditionError, match="Invalid action"):
            parse_review_action("refund_everything")


class TestReviewDispatcher:

    @pytest.mark.asyncio
    async def test_customer_cannot_review(self, mock_db):
        with pytest.raises(RefundPermissionError):
            await RefundReviewService.review(mock_db, RequestActor.customer(CUSTOMER_ID), 1, "approve")
        mock_db.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_request(self, mock_db, admin_actor):
        with pytest.raises(RefundNotFoundError):
            await RefundReviewService.review(mock_db, admin_actor, 999, "approve")

    @pytest.mark.asyncio
    async def test_assign_moves_to_under_review(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.PENDING)
        store = pass_store(refund_request=refund)

        outcome = await RefundReviewService.review(mock_db, admin_actor, refund.id, "assign", admin_notes="mine")

        assert refund.status == RefundStatus.UNDER_REVIEW
        assert refund.assigned_to == ADMIN_ID
        assert refund.assigned_at is not None
        assert refund.reviewed_by == ADMIN_ID
        assert refund.reviewed_at is not None
        assert refund.admin_notes == "mine"
        assert outcome.previous_status == RefundStatus.PENDING
        assert [a.action for a in store.added_of(ActivityLog)] == ["refund_assign"]
        # no timeline event for assignment
        assert store.added_of(OrderTimelineEvent) == []

    @pytest.mark.asyncio
    async def test_approve_defaults(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.UNDER_REVIEW, amount="150.00")
        store = pass_store(refund_request=refund)

        outcome = await RefundReviewService.review(mock_db, admin_actor, refund.id, "approve")

        assert refund.status == RefundStatus.APPROVED
        assert refund.refund_method == RefundMethod.ORIGINAL_PAYMENT
        assert refund.refund_amount == Decimal("150.00")
        assert outcome.message == "Refund request approved successfully"
        activity = store.added_of(ActivityLog)[0]
        assert activity.action == "refund_approve"
        assert activity.user_type == "admin"
        assert activity.details["previous_status"] == "under_review"
        assert activity.details["new_status"] == "approved"
        assert [e.event_type for e in store.added_of(OrderTimelineEvent)] == ["refund_approved"]

    @pytest.mark.asyncio
    async def test_approve_with_explicit_method_and_amount(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.PENDING)
        pass_store(refund_request=refund)

        await RefundReviewService.review(
            mock_db, admin_actor, refund.id, "approve",
            refund_method=RefundMethod.STORE_CREDIT,
            refund_amount=Decimal("120.00"),
        )

        assert refund.refund_method == RefundMethod.STORE_CREDIT
        assert refund.refund_amount == Decimal("120.00")

    @pytest.mark.asyncio
    async def test_approve_amount_over_total_is_rejected(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.PENDING)
        pass_store(refund_request=refund)

        with pytest.raises(RefundPreconditionError, match="refund_amount cannot exceed"):
            await RefundReviewService.review(
                mock_db, admin_actor, refund.id, "approve", refund_amount=Decimal("500.00")
            )

        assert refund.status == RefundStatus.PENDING

    @pytest.mark.asyncio
    async def test_reject_without_reason_fails_before_any_write(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.PENDING)
        passes = [make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE)]
        store = pass_store(passes=passes, refund_request=refund)

        with pytest.raises(RefundPreconditionError) as exc_info:
            await RefundReviewService.review(mock_db, admin_actor, refund.id, "reject", rejection_reason="  ")

        assert exc_info.value.message == "Rejection reason is required"
        assert refund.status == RefundStatus.PENDING
        assert refund.reviewed_by is None
        assert passes[0].status == PassStatus.SUSPENDED
        assert store.added == []
        mock_db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reject_from_wrong_state_is_checked_before_reason(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.APPROVED)
        pass_store(refund_request=refund)

        with pytest.raises(InvalidRefundTransitionError):
            await RefundReviewService.review(mock_db, admin_actor, refund.id, "reject")

    @pytest.mark.asyncio
    async def test_reject_reactivates_passes(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.UNDER_REVIEW)
        passes = [
            make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE),
            make_pass(2, PassStatus.SUSPENDED, activated=False),
        ]
        store = pass_store(passes=passes, refund_request=refund)

        outcome = await RefundReviewService.review(
            mock_db, admin_actor, refund.id, "reject", rejection_reason="Passes were delivered"
        )

        assert refund.status == RefundStatus.REJECTED
        assert refund.rejection_reason == "Passes were delivered"
        assert passes[0].status == PassStatus.ACTIVE
        assert passes[1].status == PassStatus.PENDING_ACTIVATION
        assert outcome.reactivation.succeeded == [1, 2]
        timeline = store.added_of(OrderTimelineEvent)
        assert [e.event_type for e in timeline] == ["refund_rejected"]
        assert timeline[0].description == "Passes were delivered"


class TestMarkCompleted:

    @pytest.mark.asyncio
    async def test_completion_invariant(self, mock_db, pass_store, admin_actor):
        order = make_order()
        refund = make_refund(RefundStatus.APPROVED, refund_amount=Decimal("200.00"))
        passes = [
            make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE),
            make_pass(2, PassStatus.ACTIVE),
            make_pass(3, PassStatus.PENDING_ACTIVATION, activated=False),
        ]
        store = pass_store(order=order, passes=passes, refund_request=refund)

        outcome = await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")

        assert outcome.cancelled_passes == 3
        assert all(p.status == PassStatus.CANCELLED for p in passes)
        assert order.status == "refunded"
        assert order.payment_status == "refunded"
        assert refund.status == RefundStatus.COMPLETED
        assert refund.refund_processed_at is not None
        assert refund.refund_transaction_id.startswith("SIM-")
        assert [a.action for a in store.added_of(ActivityLog)] == ["refund_mark_completed"]
        assert [e.event_type for e in store.added_of(OrderTimelineEvent)] == ["refund_completed"]

    @pytest.mark.asyncio
    async def test_completion_is_idempotent(self, mock_db, pass_store, admin_actor):
        order = make_order()
        refund = make_refund(RefundStatus.APPROVED)
        passes = [make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE)]
        pass_store(order=order, passes=passes, refund_request=refund)

        await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")
        processed_at = refund.refund_processed_at
        transaction_id = refund.refund_transaction_id

        outcome = await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")

        assert outcome.previous_status == RefundStatus.COMPLETED
        assert outcome.cancelled_passes == 0
        assert refund.status == RefundStatus.COMPLETED
        assert refund.refund_processed_at == processed_at
        assert refund.refund_transaction_id == transaction_id
        assert order.status == "refunded"

    @pytest.mark.asyncio
    async def test_pass_cancellation_failure_changes_nothing(self, mock_db, admin_actor):
        order = make_order()
        refund = make_refund(RefundStatus.APPROVED)
        mock_db.execute = AsyncMock(side_effect=SQLAlchemyError("statement timeout"))
        mock_db.get = AsyncMock(return_value=order)

        with pytest.raises(PassCancellationError):
            await RefundReviewService.mark_completed(mock_db, admin_actor, refund)

        assert refund.status == RefundStatus.APPROVED
        assert order.status == "completed"
        mock_db.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_update_failure_leaves_passes_cancelled(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.APPROVED)
        passes = [make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE)]
        pass_store(passes=passes, refund_request=refund)
        mock_db.flush = AsyncMock(side_effect=SQLAlchemyError("connection reset"))

        with pytest.raises(RefundCompletionError) as exc_info:
            await RefundReviewService.mark_completed(mock_db, admin_actor, refund)

        assert exc_info.value.severity == "P0"
        assert passes[0].status == PassStatus.CANCELLED
        assert refund.status == RefundStatus.APPROVED
        assert refund.refund_processed_at is None

    @pytest.mark.asyncio
    async def test_retry_after_order_update_failure_converges(self, mock_db, pass_store, admin_actor):
        order = make_order()
        refund = make_refund(RefundStatus.APPROVED)
        passes = [make_pass(1, PassStatus.SUSPENDED, previous_status=PassStatus.ACTIVE)]
        pass_store(order=order, passes=passes, refund_request=refund)
        mock_db.flush = AsyncMock(side_effect=[SQLAlchemyError("connection reset")] + [None] * 10)

        with pytest.raises(RefundCompletionError):
            await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")

        outcome = await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")

        assert outcome.cancelled_passes == 0
        assert refund.status == RefundStatus.COMPLETED
        assert order.status == "refunded"
        assert passes[0].status == PassStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_missing_order_is_a_completion_error(self, mock_db, pass_store, admin_actor):
        refund = make_refund(RefundStatus.APPROVED)
        store = pass_store(passes=[make_pass(1)], refund_request=refund)
        store.order = None

        with pytest.raises(RefundCompletionError, match="Order not found"):
            await RefundReviewService.mark_completed(mock_db, admin_actor, refund)


@pytest.mark.asyncio
async def test_two_active_passes_full_refund_scenario(mock_db, pass_store, customer_actor, admin_actor):
    order = make_order(total="200.00")
    passes = [make_pass(1), make_pass(2)]
    store = pass_store(order=order, passes=passes)

    created = await RefundEligibilityService.request_refund(
        mock_db,
        customer_actor,
        order_id=ORDER_ID,
        reason_type=RefundReasonType.TECHNICAL_ISSUE,
        reason_text="QR codes never rendered",
        requested_amount=Decimal("200"),
    )
    refund = created.refund_request

    assert refund.status == RefundStatus.PENDING
    assert all(p.status == PassStatus.SUSPENDED for p in passes)
    assert all(p.previous_status == PassStatus.ACTIVE for p in passes)

    await RefundReviewService.review(mock_db, admin_actor, refund.id, "approve", refund_amount=Decimal("200"))
    assert refund.status == RefundStatus.APPROVED
    assert refund.refund_amount == Decimal("200")

    await RefundReviewService.review(mock_db, admin_actor, refund.id, "mark_completed")

    assert refund.status == RefundStatus.COMPLETED
    assert all(p.status == PassStatus.CANCELLED for p in passes)
    assert not any(p.status in LIVE_STATUSES for p in passes)
    assert (order.status, order.payment_status) == ("refunded", "refunded")
    assert [e.event_type for e in store.added_of(OrderTimelineEvent)] == [
        "refund_requested", "refund_approved", "refund_completed",
    ]
