"""Processed payment-provider webhook events."""

import uuid

from sqlalchemy import Column, DateTime, JSON, String
from sqlalchemy.sql import func

from database import Base


class BillingEvent(Base):
    """Stripe event id registry; a second delivery of the same id is ignored."""

    __tablename__ = "billing_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    stripe_event_id = Column(String, unique=True, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
