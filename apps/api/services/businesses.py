"""Business account lookup and onboarding."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.business import Business
from models.user import User
from services.credit_costs import DEFAULT_PLAN, get_plan
from services.credits import CreditLedger
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(id=user_id, email=email or f"{user_id}@local.invalid")
    db.add(user)
    await db.flush()
    return user


async def get_business_for_user(db: AsyncSession, user_id: str) -> Business:
    result = await db.execute(
        select(Business).where(Business.user_id == user_id).order_by(Business.created_at.asc()).limit(1)
    )
    business = result.scalar_one_or_none()
    if business is None:
        raise NotFoundError("Business not found for this user. Complete business setup first.")
    return business


async def create_business(
    db: AsyncSession,
    *,
    user_id: str,
    business_name: str,
    email: Optional[str] = None,
) -> Business:
    """Create a FREE-plan business and grant its welcome credits."""
    await ensure_user(db, user_id, email)
    business = Business(
        user_id=user_id,
        business_name=business_name,
        credits=0,
        subscription_plan=DEFAULT_PLAN,
        subscription_status="active",
    )
    db.add(business)
    await db.flush()

    welcome = get_plan(DEFAULT_PLAN).monthly_credits
    if welcome > 0:
        await CreditLedger(db).add_credits(
            business.id,
            welcome,
            "bonus",
            description="Welcome credits",
            metadata={"reason": "business_setup"},
        )
    else:
        await db.commit()
    await db.refresh(business)
    logger.info("business_created id=%s user=%s welcome_credits=%s", business.id, user_id, welcome)
    return business


def serialize_business(business: Business) -> Dict[str, Any]:
    return {
        "id": business.id,
        "user_id": business.user_id,
        "business_name": business.business_name,
        "credits": int(business.credits or 0),
        "subscription_plan": business.subscription_plan,
        "subscription_status": business.subscription_status,
        "subscription_expires_at": (
            business.subscription_expires_at.isoformat() if business.subscription_expires_at else None
        ),
        "created_at": business.created_at.isoformat() if business.created_at else None,
    }
