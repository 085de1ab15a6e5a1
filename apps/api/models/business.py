"""Business model holding the credit balance and subscription state."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Business(Base):
    """Business account; `credits` is the single source of spending power."""

    __tablename__ = "businesses"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_businesses_credits_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    business_name = Column(String, nullable=False)
    credits = Column(Integer, nullable=False, default=0)
    subscription_plan = Column(String, nullable=False, default="FREE")  # FREE, STARTER, PROFESSIONAL, ENTERPRISE
    subscription_status = Column(String, nullable=True)  # active, past_due, cancelled
    subscription_started_at = Column(DateTime(timezone=True), nullable=True)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="businesses")
    credit_transactions = relationship("CreditTransaction", back_populates="business")
    campaigns = relationship("Campaign", back_populates="business")
