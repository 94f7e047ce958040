"""
User model

Identity only: customers and admins share the users table and are told apart
by is_admin. Credentials live with the platform auth service.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from tourpass.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    orders = relationship("Order", back_populates="customer", foreign_keys="Order.customer_id")
    refund_requests = relationship(
        "RefundRequest",
        back_populates="customer",
        foreign_keys="RefundRequest.customer_id",
    )
