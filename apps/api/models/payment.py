"""StripeTransaction model: one row per external checkout attempt."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class StripeTransaction(Base):
    """Payment processor record keyed by the checkout session id."""

    __tablename__ = "stripe_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_session_id = Column(String, unique=True, nullable=False)
    stripe_payment_id = Column(String, nullable=True, index=True)
    amount = Column(Integer, nullable=False, default=0)  # minor currency units
    currency = Column(String, nullable=False, default="usd")
    credits = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False)  # completed, failed, refunded
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="payments")
