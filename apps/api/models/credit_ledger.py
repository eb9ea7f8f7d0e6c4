"""CreditTransaction model: the append-only credit ledger."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from database import Base


TRANSACTION_KINDS = ("generation", "purchase", "refund", "bonus")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditTransaction(Base):
    """Immutable credit ledger entry.

    ``amount`` is signed (negative for debits) and ``balance_after`` snapshots
    the account balance immediately after the entry was applied.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    kind = Column("type", String, nullable=False)  # generation, purchase, refund, bonus
    description = Column(String, nullable=True)
    balance_after = Column(Integer, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    # Python-side timestamp keeps sub-second ordering on every backend.
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    user = relationship("User", back_populates="credit_transactions")
