"""
Order model

Owned by the commerce subsystem. The refund engine only ever moves an order
to status=refunded / payment_status=refunded, as the last step of a
completed refund.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Orders in these states can never enter the refund workflow
NON_REFUNDABLE_ORDER_STATUSES = {
    OrderStatus.REFUNDED: "Order has already been refunded",
    OrderStatus.CANCELLED: "Cannot refund a cancelled order",
}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    # FK with SET NULL to preserve order history
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    order_number = Column(String(50), unique=True, index=True, nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    # Monetary values: Numeric(12,2)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="TRY", nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)

    customer = relationship("User", back_populates="orders", foreign_keys=[customer_id])
    passes = relationship("PurchasedPass", back_populates="order")
    refund_requests = relationship("RefundRequest", back_populates="order")
    timeline_events = relationship("OrderTimelineEvent", back_populates="order",
                                   order_by="OrderTimelineEvent.created_at")

    __table_args__ = (
        Index('ix_orders_customer_created', 'customer_id', 'created_at'),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled', 'refunded')",
            name='check_order_status',
        ),
        CheckConstraint('total_amount >= 0', name='check_order_total_non_negative'),
    )
