"""Creation model for generated HTML artifacts."""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


GENERATION_MODES = ("web", "mobile", "social", "logo")


class Creation(Base):
    """A generated artifact; content is released once `purchased` flips to true."""

    __tablename__ = "creations"
    __table_args__ = (
        CheckConstraint("mode IN ('web', 'mobile', 'social', 'logo')", name="ck_creations_mode"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    html = Column(Text, nullable=False)
    original_image = Column(Text, nullable=True)
    mode = Column(String, nullable=False, default="web", server_default="web")
    purchased = Column(Boolean, nullable=False, default=False, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="creations")
