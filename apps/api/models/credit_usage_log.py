"""CreditUsageLog model for per-action usage analytics."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from database import Base


class CreditUsageLog(Base):
    """One row per consumption event, kept apart from the transaction log."""

    __tablename__ = "credit_usage_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    campaign_id = Column(String, ForeignKey("campaigns.id"), nullable=True, index=True)
    action_type = Column(String, nullable=False)
    credits_used = Column(Integer, nullable=False)
    feature_used = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
