"""
Refund Request Models

Customer refund requests for purchased passes.

- RefundRequest: one row per request, never deleted
- REVIEW_ACTION_SOURCE_STATES: which states each admin action may start from

DB Compliance:
- Numeric(12,2) for monetary fields
- Partial unique index: at most one in-flight or completed request per order
- Timezone-aware UTC timestamps
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, DateTime, Text,
    Numeric, ForeignKey, Index, Enum, CheckConstraint, text
)
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


# =============================================================================
# ENUMS
# =============================================================================

class RefundStatus(str, PyEnum):
    """
    Refund request state machine.

    1. Customer requests -> PENDING
    2. Admin picks it up -> UNDER_REVIEW (optional)
    3. Admin decides -> APPROVED or REJECTED
    4. Settlement done -> COMPLETED
    """
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RefundReasonType(str, PyEnum):
    """Standard refund reason codes."""
    NOT_AS_DESCRIBED = "not_as_described"
    TECHNICAL_ISSUE = "technical_issue"
    DUPLICATE_PURCHASE = "duplicate_purchase"
    CHANGED_MIND = "changed_mind"
    OTHER = "other"


class RefundMethod(str, PyEnum):
    ORIGINAL_PAYMENT = "original_payment"
    BANK_TRANSFER = "bank_transfer"
    STORE_CREDIT = "store_credit"


class ReviewAction(str, PyEnum):
    ASSIGN = "assign"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_COMPLETED = "mark_completed"


# Requests in these states block a new request for the same order
IN_FLIGHT_REFUND_STATUSES = (
    RefundStatus.PENDING,
    RefundStatus.UNDER_REVIEW,
    RefundStatus.APPROVED,
    RefundStatus.COMPLETED,
)


def _enum_type(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


# =============================================================================
# REFUND REQUEST
# =============================================================================

class RefundRequest(Base):
    """
    Customer refund request for an order of passes.

    Created by the eligibility guard in PENDING, mutated only by the
    review state machine.
    """
    __tablename__ = "refund_requests"

    id = Column(Integer, primary_key=True, index=True)

    # Format: REF-YYYYMMDD-XXXXXXXX
    request_number = Column(String(50), unique=True, nullable=False, index=True)

    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(
        _enum_type(RefundStatus, "refund_status"),
        default=RefundStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Request details
    reason_type = Column(_enum_type(RefundReasonType, "refund_reason_type"), nullable=False)
    reason_text = Column(Text, nullable=False)
    requested_amount = Column(Numeric(12, 2), nullable=False)

    # Decision
    refund_method = Column(_enum_type(RefundMethod, "refund_method"), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    # Review
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    # Settlement (simulated)
    refund_processed_at = Column(DateTime(timezone=True), nullable=True)
    refund_transaction_id = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="refund_requests")
    customer = relationship("User", foreign_keys=[customer_id], back_populates="refund_requests")
    assignee = relationship("User", foreign_keys=[assigned_to])
    reviewer = relationship("User", foreign_keys=[reviewed_by])

    __table_args__ = (
        Index('ix_refund_requests_status_created', 'status', 'created_at'),
        Index('ix_refund_requests_customer', 'customer_id', 'created_at'),
        Index(
            'uq_refund_requests_order_in_flight',
            'order_id',
            unique=True,
            postgresql_where=text(
                "status IN ('pending', 'under_review', 'approved', 'completed')"
            ),
        ),
        CheckConstraint('requested_amount > 0', name='check_refund_requested_amount_positive'),
        CheckConstraint('refund_amount IS NULL OR refund_amount > 0', name='check_refund_amount_positive'),
    )

    def __repr__(self):
        return f"<RefundRequest(id={self.id}, number='{self.request_number}', status='{self.status}')>"


# =============================================================================
# REVIEW ACTION SOURCE STATES
# =============================================================================

REVIEW_ACTION_SOURCE_STATES = {
    ReviewAction.ASSIGN: (RefundStatus.PENDING,),
    ReviewAction.APPROVE: (RefundStatus.PENDING, RefundStatus.UNDER_REVIEW),
    ReviewAction.REJECT: (RefundStatus.PENDING, RefundStatus.UNDER_REVIEW),
    # completed re-confirms the terminal state
    ReviewAction.MARK_COMPLETED: (RefundStatus.APPROVED, RefundStatus.COMPLETED),
}

# Reported verbatim when an action is attempted from the wrong state
REVIEW_ACTION_STATE_ERRORS = {
    ReviewAction.ASSIGN: "Can only assign pending requests",
    ReviewAction.APPROVE: "Can only approve pending/under review requests",
    ReviewAction.REJECT: "Can only reject pending/under review requests",
    ReviewAction.MARK_COMPLETED: "Can only mark approved requests as completed",
}
