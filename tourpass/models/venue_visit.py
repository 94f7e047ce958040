"""
Venue visit model (the usage ledger)

One row per venue check-in of a pass. Rows are appended by the
redemption flow and never updated or deleted. Any row, whatever its
status, counts as usage when screening a refund.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


class VisitStatus(str, PyEnum):
    PENDING = "pending"  # checked in, not confirmed by the venue yet
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VenueVisit(Base):
    __tablename__ = "venue_visits"

    id = Column(Integer, primary_key=True, index=True)
    purchased_pass_id = Column(Integer, ForeignKey("purchased_passes.id", ondelete="CASCADE"),
                               nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    business_id = Column(Integer, nullable=False, index=True)

    status = Column(String(20), default=VisitStatus.COMPLETED.value, nullable=False)
    visit_date = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    purchased_pass = relationship("PurchasedPass", back_populates="visits")

    __table_args__ = (
        Index('ix_venue_visits_pass_status', 'purchased_pass_id', 'status'),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')",
            name='check_venue_visit_status',
        ),
    )

    def __repr__(self):
        return f"<VenueVisit(id={self.id}, pass={self.purchased_pass_id}, status='{self.status}')>"
