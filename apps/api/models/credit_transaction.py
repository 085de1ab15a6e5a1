"""CreditTransaction model: append-only balance audit log."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, text
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditTransaction(Base):
    """Immutable credit transaction. Corrections are new offsetting rows."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # One monthly allocation per business per billing period.
        Index(
            "ux_credit_transactions_monthly_allocation_period",
            "business_id",
            "period_key",
            unique=True,
            postgresql_where=text("transaction_type = 'monthly_allocation'"),
            sqlite_where=text("transaction_type = 'monthly_allocation'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String, ForeignKey("businesses.id"), nullable=False, index=True)
    transaction_type = Column(String, nullable=False)  # purchase, usage, refund, monthly_allocation, bonus
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)
    period_key = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    business = relationship("Business", back_populates="credit_transactions")
