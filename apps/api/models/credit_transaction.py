"""CreditTransaction model: append-only audit trail of balance deltas."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


REASON_INITIAL_FREE = "INITIAL_FREE"
REASON_DOWNLOAD = "DOWNLOAD"
REASON_ONE_OFF_PURCHASE = "ONE_OFF_PURCHASE"
REASON_SUBSCRIPTION_MONTHLY = "SUBSCRIPTION_MONTHLY"
REASONS = (
    REASON_INITIAL_FREE,
    REASON_DOWNLOAD,
    REASON_ONE_OFF_PURCHASE,
    REASON_SUBSCRIPTION_MONTHLY,
)


class CreditTransaction(Base):
    """Immutable credit ledger entry."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint(
            "reason IN ('INITIAL_FREE', 'DOWNLOAD', 'ONE_OFF_PURCHASE', 'SUBSCRIPTION_MONTHLY')",
            name="ck_credit_transactions_reason",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    change = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_transactions")
