"""
Health endpoints: dependency status plus readiness and liveness probes.
"""

from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.future import select
import redis.asyncio as redis

from config import settings
from database import async_session_maker
from models.billing_event import BillingEvent

router = APIRouter()


async def _database_status() -> Dict[str, Any]:
    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
            processed = await session.execute(select(func.count(BillingEvent.id)))
        return {"status": "up", "billing_events_processed": int(processed.scalar() or 0)}
    except Exception as e:
        return {"status": f"down: {str(e)}"}


async def _redis_status() -> str:
    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
        return "up"
    except Exception as e:
        # Rate limiting falls back to per-process counters without Redis.
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Report database and Redis reachability and billing configuration.
    The ledger cannot operate without the database; Redis only degrades rate limiting.
    """
    database = await _database_status()
    redis_status = await _redis_status()

    status = "healthy"
    if database["status"] != "up":
        status = "unhealthy"
    elif redis_status != "up":
        status = "degraded"

    return {
        "status": status,
        "api": "up",
        "database": database,
        "redis": redis_status,
        "stripe_webhooks": "configured" if settings.STRIPE_WEBHOOK_SECRET else "missing",
    }


@router.get("/health/ready")
async def readiness_check():
    """Ready once the database answers and Stripe webhooks can be verified."""
    missing = []
    if not settings.STRIPE_WEBHOOK_SECRET:
        missing.append("STRIPE_WEBHOOK_SECRET")
    database = await _database_status()
    if database["status"] != "up":
        missing.append("database")

    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
