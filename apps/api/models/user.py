"""User model."""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


PLAN_FREE = "FREE"
PLAN_PAY_PER_USE = "PAY_PER_USE"
PLAN_PRO = "PRO"
PLANS = (PLAN_FREE, PLAN_PAY_PER_USE, PLAN_PRO)

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


class User(Base):
    """Account holding the credit balance and plan tier."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
        CheckConstraint("plan IN ('FREE', 'PAY_PER_USE', 'PRO')", name="ck_users_plan"),
        CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False, default=ROLE_USER, server_default=ROLE_USER)
    plan = Column(String, nullable=False, default=PLAN_FREE, server_default=PLAN_FREE, index=True)
    credits = Column(Integer, nullable=False, default=0, server_default="0")
    pro_since = Column(DateTime(timezone=True), nullable=True)
    pro_until = Column(DateTime(timezone=True), nullable=True)
    daily_usage_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_reset_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")
    creations = relationship("Creation", back_populates="user", cascade="all, delete-orphan")
    payment_sessions = relationship("PaymentSession", back_populates="user", cascade="all, delete-orphan")
