"""PaymentSession model tracking checkout attempts across gateways."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class PaymentSession(Base):
    """One checkout attempt with any configured payment gateway."""

    __tablename__ = "payment_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    gateway = Column(String, nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="USD")
    order_id = Column(String, nullable=False, unique=True, index=True)
    provider_reference = Column(String, nullable=True, index=True)
    purchase_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    transaction_id = Column(String, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="payment_sessions")
