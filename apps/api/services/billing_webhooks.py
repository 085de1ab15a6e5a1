"""Reconcile verified Stripe webhook events into ledger entries.

Signature verification happens in the router; this module trusts the event
dict it is given. Each event id is recorded in ``billing_events`` in the same
transaction as its ledger effect, so redelivered events are no-ops.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.billing_event import BillingEvent
from models.business import Business
from services.credit_costs import DEFAULT_PLAN, resolve_plan
from services.credits import CreditLedger

logger = logging.getLogger(__name__)


def _to_dt(ts: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc) if ts else None
    except (TypeError, ValueError):
        return None


def _period_key_from_ts(ts: Any) -> Optional[str]:
    moment = _to_dt(ts)
    return moment.strftime("%Y-%m") if moment else None


async def _find_business(
    db: AsyncSession,
    *,
    business_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> Optional[Business]:
    query = None
    if business_id:
        query = select(Business).where(Business.id == business_id)
    elif stripe_subscription_id:
        query = select(Business).where(Business.stripe_subscription_id == stripe_subscription_id)
    if query is None:
        return None
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def _handle_payment_succeeded(obj: Dict[str, Any], ledger: CreditLedger) -> bool:
    metadata = obj.get("metadata") or {}
    if not metadata.get("credits"):
        return False
    business_id = metadata.get("business_id")
    try:
        credits = int(metadata.get("credits") or 0)
    except (TypeError, ValueError):
        credits = 0
    if not business_id or credits <= 0:
        raise ValueError("Invalid payment metadata")

    await ledger.add_credits(
        business_id,
        credits,
        "purchase",
        description=f"Purchased {credits} credits",
        stripe_payment_intent_id=obj.get("id"),
        metadata={
            "amount_paid": str(obj.get("amount", "")),
            "currency": obj.get("currency"),
        },
        commit=False,
    )
    return True


def _subscription_period_end(obj: Dict[str, Any]) -> Any:
    items = ((obj.get("items") or {}).get("data") or [])
    if items and items[0].get("current_period_end"):
        return items[0]["current_period_end"]
    return obj.get("current_period_end")


async def _handle_subscription_change(obj: Dict[str, Any], db: AsyncSession, ledger: CreditLedger) -> bool:
    if obj.get("status") != "active":
        return False
    metadata = obj.get("metadata") or {}
    business_id = metadata.get("business_id")
    if not business_id:
        raise ValueError("No business_id in subscription metadata")
    plan = resolve_plan(metadata.get("subscription_plan"))

    business = await _find_business(db, business_id=business_id)
    if business is None:
        raise ValueError(f"Business {business_id} referenced by subscription {obj.get('id')} not found")

    business.subscription_plan = plan.key
    business.subscription_status = obj.get("status")
    business.subscription_started_at = _to_dt(obj.get("created"))
    business.subscription_expires_at = _to_dt(_subscription_period_end(obj))
    business.stripe_subscription_id = obj.get("id")
    if obj.get("customer"):
        business.stripe_customer_id = obj.get("customer")
    await db.flush()

    await ledger.grant_monthly_allocation(
        business.id,
        period_key=_period_key_from_ts(obj.get("current_period_start")),
        metadata={"subscription_id": obj.get("id")},
        commit=False,
    )
    return True


async def _handle_subscription_deleted(obj: Dict[str, Any], db: AsyncSession) -> bool:
    metadata = obj.get("metadata") or {}
    business = await _find_business(
        db,
        business_id=metadata.get("business_id"),
        stripe_subscription_id=obj.get("id"),
    )
    if business is None:
        logger.warning("Subscription %s deleted for unknown business", obj.get("id"))
        return False
    business.subscription_plan = DEFAULT_PLAN
    business.subscription_status = "cancelled"
    business.subscription_expires_at = _to_dt(obj.get("ended_at")) or datetime.now(timezone.utc)
    await db.flush()
    return True


def _invoice_subscription_ref(obj: Dict[str, Any]) -> tuple:
    subscription_id = obj.get("subscription")
    details = obj.get("subscription_details") or ((obj.get("parent") or {}).get("subscription_details") or {})
    if not subscription_id:
        subscription_id = details.get("subscription")
    metadata = details.get("metadata") or {}
    return subscription_id, metadata.get("business_id")


async def _handle_invoice_paid(obj: Dict[str, Any], db: AsyncSession, ledger: CreditLedger) -> bool:
    if obj.get("billing_reason") != "subscription_cycle":
        return False
    subscription_id, business_id = _invoice_subscription_ref(obj)
    business = await _find_business(db, business_id=business_id, stripe_subscription_id=subscription_id)
    if business is None:
        logger.warning("Invoice %s paid for unknown subscription %s", obj.get("id"), subscription_id)
        return False
    await ledger.grant_monthly_allocation(
        business.id,
        period_key=_period_key_from_ts(obj.get("period_end") or obj.get("created")),
        metadata={"subscription_id": subscription_id, "invoice_id": obj.get("id")},
        commit=False,
    )
    return True


async def _handle_invoice_failed(obj: Dict[str, Any], db: AsyncSession) -> bool:
    subscription_id, business_id = _invoice_subscription_ref(obj)
    business = await _find_business(db, business_id=business_id, stripe_subscription_id=subscription_id)
    if business is None:
        return False
    business.subscription_status = "past_due"
    await db.flush()
    return True


async def process_stripe_event(event: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Apply one Stripe event. Returns ``{"received", "duplicate", "handled"}``."""
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise ValueError("Malformed Stripe event")

    existing = await db.execute(select(BillingEvent.id).where(BillingEvent.stripe_event_id == event_id))
    if existing.first() is not None:
        return {"received": True, "duplicate": True, "handled": False}

    obj = (event.get("data") or {}).get("object") or {}
    ledger = CreditLedger(db)
    try:
        db.add(BillingEvent(stripe_event_id=event_id, event_type=event_type, payload=event))
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("Stripe event %s already recorded by a concurrent delivery", event_id)
        return {"received": True, "duplicate": True, "handled": False}

    try:
        if event_type == "payment_intent.succeeded":
            handled = await _handle_payment_succeeded(obj, ledger)
        elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
            handled = await _handle_subscription_change(obj, db, ledger)
        elif event_type == "customer.subscription.deleted":
            handled = await _handle_subscription_deleted(obj, db)
        elif event_type == "invoice.payment_succeeded":
            handled = await _handle_invoice_paid(obj, db, ledger)
        elif event_type == "invoice.payment_failed":
            handled = await _handle_invoice_failed(obj, db)
        else:
            logger.info("Unhandled Stripe event type: %s", event_type)
            handled = False

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("stripe_event id=%s type=%s handled=%s", event_id, event_type, handled)
    return {"received": True, "duplicate": False, "handled": handled}
