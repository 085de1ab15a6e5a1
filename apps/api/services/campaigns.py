"""Campaign lifecycle: creation, cost estimation and credit-backed transitions.

draft -> in_progress -> completed | failed | cancelled (a draft may also be
cancelled). Each transition is a conditional UPDATE on the current status,
committed together with its ledger effect, so a transition that loses a race
or is replayed against a terminal campaign writes nothing.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.campaign import Campaign
from services.credit_costs import CAMPAIGN_BASE_COSTS
from services.credits import CreditLedger
from services.errors import InvalidStateTransitionError, NotFoundError

logger = logging.getLogger(__name__)

DRAFT = "draft"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

CAMPAIGN_STATUSES = (DRAFT, IN_PROGRESS, COMPLETED, FAILED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)

QUALITY_MULTIPLIERS = {"high": 1.5, "premium": 2.0}
RESOLUTION_MULTIPLIERS = {"4k": 1.5, "8k": 2.0}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _duration_multiplier(raw_duration: Any) -> float:
    try:
        duration = int(float(str(raw_duration).strip()))
    except (TypeError, ValueError):
        return 1.0
    if duration > 60:
        return 2.0
    if duration > 30:
        return 1.5
    return 1.0


def estimate_credits(campaign_type: Optional[str], settings: Optional[Dict[str, Any]] = None) -> int:
    """Estimate a campaign's credit cost from its type and generation settings."""
    if not campaign_type:
        return 0
    base_cost = CAMPAIGN_BASE_COSTS.get(campaign_type, 1)
    multiplier = 1.0
    options = settings if isinstance(settings, dict) else {}

    quality = str(options.get("quality") or "").lower()
    multiplier *= QUALITY_MULTIPLIERS.get(quality, 1.0)

    if campaign_type == "video" and "duration" in options:
        multiplier *= _duration_multiplier(options["duration"])

    if campaign_type == "image":
        resolution = str(options.get("resolution") or "").lower()
        multiplier *= RESOLUTION_MULTIPLIERS.get(resolution, 1.0)

    return int(math.ceil(base_cost * multiplier))


def serialize_campaign(campaign: Campaign) -> Dict[str, Any]:
    return {
        "id": campaign.id,
        "business_id": campaign.business_id,
        "user_id": campaign.user_id,
        "name": campaign.name,
        "description": campaign.description,
        "prompt": campaign.prompt,
        "status": campaign.status,
        "campaign_type": campaign.campaign_type,
        "estimated_credits": campaign.estimated_credits,
        "credits_used": campaign.credits_used,
        "settings": campaign.settings_json or {},
        "metadata": campaign.metadata_json or {},
        "scene_data": campaign.scene_data,
        "output_urls": campaign.output_urls or [],
        "thumbnail_url": campaign.thumbnail_url,
        "error_message": campaign.error_message,
        "created_at": campaign.created_at.isoformat() if campaign.created_at else None,
        "started_at": campaign.started_at.isoformat() if campaign.started_at else None,
        "completed_at": campaign.completed_at.isoformat() if campaign.completed_at else None,
    }


class CampaignLifecycle:
    """Campaign state machine bound to one session and one credit ledger."""

    def __init__(self, db: AsyncSession, ledger: Optional[CreditLedger] = None):
        self.db = db
        self.ledger = ledger or CreditLedger(db)

    async def get_campaign(self, campaign_id: str, business_id: Optional[str] = None) -> Campaign:
        query = select(Campaign).where(Campaign.id == campaign_id)
        if business_id is not None:
            query = query.where(Campaign.business_id == business_id)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        campaign = result.scalar_one_or_none()
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found.")
        return campaign

    async def list_campaigns(
        self,
        business_id: str,
        *,
        status: Optional[str] = None,
        campaign_type: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Campaign]:
        query = select(Campaign).where(Campaign.business_id == business_id)
        if status:
            query = query.where(Campaign.status == status)
        if campaign_type:
            query = query.where(Campaign.campaign_type == campaign_type)
        result = await self.db.execute(
            query.order_by(Campaign.created_at.desc()).offset(max(int(offset), 0)).limit(max(int(limit), 1))
        )
        return list(result.scalars().all())

    async def create_campaign(
        self,
        *,
        business_id: str,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        campaign_type: Optional[str] = None,
        prompt: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> Campaign:
        await self.ledger.get_balance(business_id)
        campaign = Campaign(
            business_id=business_id,
            user_id=user_id,
            name=name,
            description=description,
            campaign_type=campaign_type,
            prompt=prompt,
            settings_json=dict(settings or {}),
            metadata_json={},
            status=DRAFT,
            estimated_credits=estimate_credits(campaign_type, settings),
            credits_used=0,
        )
        self.db.add(campaign)
        await self.db.commit()
        await self.db.refresh(campaign)
        logger.info(
            "campaign_created id=%s business=%s type=%s estimated=%s",
            campaign.id,
            business_id,
            campaign_type,
            campaign.estimated_credits,
        )
        return campaign

    async def _transition(
        self,
        campaign: Campaign,
        *,
        allowed_from: Iterable[str],
        target: str,
        values: Dict[str, Any],
    ) -> None:
        """Move `campaign` to `target` only if it is still in one of `allowed_from`."""
        sources = tuple(allowed_from)
        assignments = {getattr(Campaign, key): value for key, value in values.items()}
        assignments[Campaign.status] = target
        result = await self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign.id, Campaign.status.in_(sources))
            .values(assignments)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateTransitionError(campaign.id, campaign.status, target)

    async def _finish(self, campaign_id: str) -> Campaign:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get_campaign(campaign_id)

    def _guard(self, campaign: Campaign, allowed_from: Iterable[str], target: str) -> None:
        if campaign.status not in tuple(allowed_from):
            raise InvalidStateTransitionError(campaign.id, campaign.status, target)

    async def start_campaign(self, campaign_id: str, *, business_id: Optional[str] = None) -> Campaign:
        campaign = await self.get_campaign(campaign_id, business_id)
        self._guard(campaign, (DRAFT,), IN_PROGRESS)
        reserved = int(campaign.estimated_credits or 0)
        try:
            await self._transition(
                campaign,
                allowed_from=(DRAFT,),
                target=IN_PROGRESS,
                values={"credits_used": reserved, "started_at": _utcnow()},
            )
            if reserved > 0:
                await self.ledger.charge(
                    campaign.business_id,
                    reserved,
                    action="campaign_start",
                    user_id=campaign.user_id,
                    description=f"Campaign started: {campaign.id}",
                    metadata={"campaign_id": campaign.id, "campaign_type": campaign.campaign_type},
                    campaign_id=campaign.id,
                    commit=False,
                )
        except Exception:
            await self.db.rollback()
            raise
        logger.info("campaign_started id=%s reserved=%s", campaign.id, reserved)
        return await self._finish(campaign.id)

    async def complete_campaign(
        self,
        campaign_id: str,
        *,
        actual_credits_used: Optional[int] = None,
        output_urls: Optional[List[str]] = None,
        thumbnail_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        business_id: Optional[str] = None,
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id, business_id)
        self._guard(campaign, (IN_PROGRESS,), COMPLETED)
        reserved = int(campaign.credits_used or 0)
        final_credits = reserved if actual_credits_used is None else int(actual_credits_used)
        if final_credits < 0:
            raise ValueError("actual_credits_used must be >= 0")
        delta = final_credits - reserved

        values: Dict[str, Any] = {"credits_used": final_credits, "completed_at": _utcnow()}
        if output_urls is not None:
            values["output_urls"] = list(output_urls)
        if thumbnail_url is not None:
            values["thumbnail_url"] = thumbnail_url
        if metadata:
            values["metadata_json"] = {**(campaign.metadata_json or {}), **metadata}

        try:
            await self._transition(campaign, allowed_from=(IN_PROGRESS,), target=COMPLETED, values=values)
            if delta < 0:
                await self.ledger.add_credits(
                    campaign.business_id,
                    -delta,
                    "refund",
                    description=f"Credit refund for campaign: {campaign.id}",
                    metadata={"campaign_id": campaign.id, "action": "campaign_refund"},
                    commit=False,
                )
            elif delta > 0:
                await self.ledger.charge(
                    campaign.business_id,
                    delta,
                    action="campaign_adjustment",
                    user_id=campaign.user_id,
                    description=f"Additional credits for campaign: {campaign.id}",
                    metadata={"campaign_id": campaign.id, "campaign_type": campaign.campaign_type},
                    campaign_id=campaign.id,
                    commit=False,
                )
        except Exception:
            await self.db.rollback()
            raise
        logger.info("campaign_completed id=%s credits_used=%s adjustment=%s", campaign.id, final_credits, delta)
        return await self._finish(campaign.id)

    async def _refund_and_close(
        self,
        campaign: Campaign,
        *,
        allowed_from: Iterable[str],
        target: str,
        values: Dict[str, Any],
        refund_action: str,
        refund_description: str,
        refund_metadata: Optional[Dict[str, Any]] = None,
    ) -> Campaign:
        sources = tuple(allowed_from)
        self._guard(campaign, sources, target)
        refund = int(campaign.credits_used or 0)
        try:
            await self._transition(campaign, allowed_from=sources, target=target, values=values)
            if refund > 0:
                await self.ledger.add_credits(
                    campaign.business_id,
                    refund,
                    "refund",
                    description=refund_description,
                    metadata={**(refund_metadata or {}), "campaign_id": campaign.id, "action": refund_action},
                    commit=False,
                )
        except Exception:
            await self.db.rollback()
            raise
        logger.info("campaign_%s id=%s refunded=%s", target, campaign.id, refund)
        return await self._finish(campaign.id)

    async def fail_campaign(
        self,
        campaign_id: str,
        *,
        error_message: Optional[str] = None,
        business_id: Optional[str] = None,
    ) -> Campaign:
        campaign = await self.get_campaign(campaign_id, business_id)
        failed_at = _utcnow()
        metadata = {**(campaign.metadata_json or {}), "failed_at": failed_at.isoformat()}
        if error_message:
            metadata["error_message"] = error_message
        return await self._refund_and_close(
            campaign,
            allowed_from=(IN_PROGRESS,),
            target=FAILED,
            values={"error_message": error_message, "metadata_json": metadata, "completed_at": failed_at},
            refund_action="campaign_failure_refund",
            refund_description=f"Credit refund for failed campaign: {campaign.id}",
            refund_metadata={"error_message": error_message} if error_message else None,
        )

    async def cancel_campaign(self, campaign_id: str, *, business_id: Optional[str] = None) -> Campaign:
        campaign = await self.get_campaign(campaign_id, business_id)
        return await self._refund_and_close(
            campaign,
            allowed_from=(DRAFT, IN_PROGRESS),
            target=CANCELLED,
            values={"completed_at": _utcnow()},
            refund_action="campaign_cancellation_refund",
            refund_description=f"Credit refund for cancelled campaign: {campaign.id}",
        )

    async def get_campaign_analytics(self, business_id: str, days: int = 30) -> Dict[str, Any]:
        start = _utcnow() - timedelta(days=max(int(days), 0))
        result = await self.db.execute(
            select(Campaign)
            .where(Campaign.business_id == business_id, Campaign.created_at >= start)
            .order_by(Campaign.created_at.desc())
        )
        campaigns = result.scalars().all()

        total = len(campaigns)
        completed = sum(1 for c in campaigns if c.status == COMPLETED)
        status_distribution: Dict[str, int] = {}
        type_distribution: Dict[str, int] = {}
        for c in campaigns:
            status_distribution[c.status] = status_distribution.get(c.status, 0) + 1
            type_key = c.campaign_type or "unspecified"
            type_distribution[type_key] = type_distribution.get(type_key, 0) + 1

        return {
            "total_campaigns": total,
            "completed_campaigns": completed,
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
            "total_credits_used": sum(int(c.credits_used or 0) for c in campaigns),
            "status_distribution": status_distribution,
            "type_distribution": type_distribution,
        }
