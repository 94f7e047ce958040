"""
Activity log, order timeline and admin notification models

The refund engine only appends to these tables. Rows are written by
services/audit_service.py.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, BigInteger, Boolean, Integer, String, DateTime, JSON, Index, Text, ForeignKey
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


class ActorType(str, PyEnum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


class TimelineEventType(str, PyEnum):
    REFUND_REQUESTED = "refund_requested"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED = "refund_rejected"
    REFUND_COMPLETED = "refund_completed"


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(BigInteger, primary_key=True, index=True)

    user_type = Column(String(20), nullable=False)  # customer, admin, system
    user_id = Column(Integer, nullable=True)

    action = Column(String(100), nullable=False)  # e.g. 'refund_approve'
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="refunds")
    details = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_activity_logs_user', 'user_type', 'user_id', 'created_at'),
        Index('ix_activity_logs_action', 'action'),
    )

    def __repr__(self):
        return f"<ActivityLog(id={self.id}, action='{self.action}')>"


class OrderTimelineEvent(Base):
    __tablename__ = "order_timeline_events"

    id = Column(BigInteger, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    event_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    details = Column(JSON, default=dict)

    actor_type = Column(String(20), nullable=False)
    actor_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    order = relationship("Order", back_populates="timeline_events")


class NotificationType(str, PyEnum):
    INFO = "info"
    WARNING = "warning"


class AdminNotification(Base):
    """One inbox entry per admin. Only is_read is ever updated, by the admin UI."""
    __tablename__ = "admin_notifications"

    id = Column(BigInteger, primary_key=True, index=True)
    admin_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    notification_type = Column("type", String(20), nullable=False, default=NotificationType.INFO.value)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(255), nullable=True)
    details = Column(JSON, default=dict)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_admin_notifications_admin_unread', 'admin_id', 'is_read', 'created_at'),
    )
