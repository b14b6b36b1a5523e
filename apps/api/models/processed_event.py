"""ProcessedEvent model: dedupe keys for payment-provider notifications."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


class ProcessedEvent(Base):
    """Provider event already applied to the ledger."""

    __tablename__ = "processed_events"

    event_id = Column(String, primary_key=True)
    provider = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
