"""User model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """User model for authenticated users; ``credits`` is the running balance."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_transactions = relationship(
        "CreditTransaction", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    payments = relationship(
        "StripeTransaction", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )
    posts = relationship("Post", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
