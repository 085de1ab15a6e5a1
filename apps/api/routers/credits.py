"""Credits router: balance, history, checks, consumption and Stripe webhook."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import require_stripe_webhook_secret
from database import get_db
from routers.auth_scope import BusinessContext, get_business_context
from routers.rate_limit import rate_limit
from services.billing_webhooks import process_stripe_event
from services.credit_costs import credit_costs, subscription_plans
from services.credits import CreditLedger, serialize_transaction

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditCheckRequest(BaseModel):
    action: str = Field(min_length=1)


class CreditConsumeRequest(BaseModel):
    action: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None


@router.get("")
async def get_credits(
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    balance = await CreditLedger(db).get_balance(ctx.business_id)
    return balance.as_dict()


@router.get("/history")
async def get_credit_history(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    entries = await CreditLedger(db).get_history(ctx.business_id, limit=limit, offset=offset)
    return {
        "items": [serialize_transaction(entry) for entry in entries],
        "limit": limit,
        "offset": offset,
    }


@router.post("/check")
async def check_credits(
    request: CreditCheckRequest,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    ledger = CreditLedger(db)
    required = ledger.required_credits(request.action)
    balance = await ledger.get_balance(ctx.business_id)
    return {
        "has_sufficient_credits": balance.credits >= required,
        "current_credits": balance.credits,
        "required_credits": required,
    }


@router.post("/consume")
async def consume_credits(
    request: CreditConsumeRequest,
    _rate_limit: None = Depends(rate_limit("credits_consume", limit=120, window_seconds=60)),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    ledger = CreditLedger(db)
    required = ledger.required_credits(request.action)
    new_balance = await ledger.consume_credits(
        ctx.business_id,
        request.action,
        ctx.user_id,
        metadata=request.metadata,
    )
    return {"new_balance": new_balance, "credits_consumed": required}


@router.get("/analytics")
async def get_credit_analytics(
    days: int = Query(default=30, ge=1, le=365),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    analytics = await CreditLedger(db).get_analytics(ctx.business_id, days=days)
    return {"days": days, "usage": analytics}


@router.get("/plans")
async def get_plans():
    return {
        "plans": {key: plan.as_dict() for key, plan in subscription_plans().items()},
        "costs": credit_costs(),
    }


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Verify a Stripe webhook signature and reconcile the event into the ledger."""
    try:
        secret = require_stripe_webhook_secret()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    raw_body = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        stripe.Webhook.construct_event(raw_body.decode("utf-8"), signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Webhook signature verification failed") from exc

    event = json.loads(raw_body)
    try:
        return await process_stripe_event(event, db)
    except ValueError as exc:
        logger.warning("Stripe event %s rejected: %s", event.get("id"), exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
