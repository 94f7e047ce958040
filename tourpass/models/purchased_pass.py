"""
Purchased pass model (the entitlement store)

A pass belongs to exactly one order and one customer. Its status is changed
by three parties only:
- activation (commerce subsystem): pending_activation -> active
- redemption (usage ledger): usage_count += 1
- refund synchronization (services/pass_sync.py): suspend / reactivate / cancel

previous_status is a typed column holding the status a pass had before a
refund suspended it. It is written and cleared by the synchronizer only.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, JSON, Index, Enum, CheckConstraint
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


class PassStatus(str, PyEnum):
    """Pass lifecycle status."""
    PENDING = "pending"  # payment pending
    PENDING_ACTIVATION = "pending_activation"  # paid, not started yet
    ACTIVE = "active"
    SUSPENDED = "suspended"  # refund in flight
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    USED = "used"


# Legacy usage counters kept in the metadata JSON bag
USAGE_METADATA_COUNTERS = ("used_count", "visit_count", "scans", "redemptions")


def _pass_status_type(name: str) -> Enum:
    return Enum(
        PassStatus,
        name=name,
        values_callable=lambda enum_cls: [member.value for member in enum_cls],
        validate_strings=True,
    )


class PurchasedPass(Base):
    __tablename__ = "purchased_passes"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    pass_name = Column(String(255), nullable=False)
    pass_type = Column(String(50), nullable=True)

    status = Column(_pass_status_type("pass_status"), default=PassStatus.PENDING_ACTIVATION,
                    nullable=False, index=True)
    previous_status = Column(_pass_status_type("pass_previous_status"), nullable=True)

    usage_count = Column(Integer, default=0, nullable=False)
    # "metadata" is reserved on declarative classes
    usage_metadata = Column("metadata", JSON, default=dict, nullable=True)

    activation_date = Column(DateTime(timezone=True), nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc))

    order = relationship("Order", back_populates="passes")
    visits = relationship("VenueVisit", back_populates="purchased_pass")

    __table_args__ = (
        Index('ix_purchased_passes_order_status', 'order_id', 'status'),
        CheckConstraint('usage_count >= 0', name='check_pass_usage_count_non_negative'),
    )

    def inferred_prior_status(self) -> PassStatus:
        """
        Status to restore a suspended pass to.

        Uses previous_status when recorded, otherwise infers it from the
        activation date: an activated pass was active, anything else had
        not been started.
        """
        if self.previous_status is not None:
            return PassStatus(self.previous_status)
        if self.activation_date is not None:
            return PassStatus.ACTIVE
        return PassStatus.PENDING_ACTIVATION

    def metadata_usage(self) -> Optional[str]:
        """Name of the first positive legacy usage counter, if any. Fractions count."""
        metadata = self.usage_metadata or {}
        for counter in USAGE_METADATA_COUNTERS:
            value = metadata.get(counter)
            if value is None:
                continue
            if isinstance(value, bool):
                value = int(value)
            try:
                if Decimal(str(value)) > 0:
                    return counter
            except (InvalidOperation, ValueError):
                continue
        return None
