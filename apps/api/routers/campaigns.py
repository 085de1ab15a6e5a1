"""Campaign router: CRUD reads and credit-backed lifecycle transitions."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import BusinessContext, get_business_context
from routers.rate_limit import rate_limit
from services.campaigns import CampaignLifecycle, serialize_campaign

router = APIRouter()
logger = logging.getLogger(__name__)

CampaignStatus = Literal["draft", "in_progress", "completed", "failed", "cancelled"]
CampaignType = Literal["video", "image", "script"]


class CreateCampaignRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    campaign_type: Optional[CampaignType] = None
    prompt: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class CompleteCampaignRequest(BaseModel):
    actual_credits_used: Optional[int] = Field(default=None, ge=0)
    output_urls: Optional[List[str]] = None
    thumbnail_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class FailCampaignRequest(BaseModel):
    error_message: Optional[str] = None


@router.post("", status_code=201)
async def create_campaign(
    request: CreateCampaignRequest,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).create_campaign(
        business_id=ctx.business_id,
        user_id=ctx.user_id,
        name=request.name,
        description=request.description,
        campaign_type=request.campaign_type,
        prompt=request.prompt,
        settings=request.settings,
    )
    return serialize_campaign(campaign)


@router.get("")
async def list_campaigns(
    status: Optional[CampaignStatus] = Query(default=None),
    campaign_type: Optional[CampaignType] = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaigns = await CampaignLifecycle(db).list_campaigns(
        ctx.business_id,
        status=status,
        campaign_type=campaign_type,
        limit=limit,
        offset=offset,
    )
    return {"items": [serialize_campaign(c) for c in campaigns], "limit": limit, "offset": offset}


@router.get("/analytics")
async def campaign_analytics(
    days: int = Query(default=30, ge=1, le=365),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    return await CampaignLifecycle(db).get_campaign_analytics(ctx.business_id, days=days)


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: str,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).get_campaign(campaign_id, ctx.business_id)
    return serialize_campaign(campaign)


@router.post("/{campaign_id}/start")
async def start_campaign(
    campaign_id: str,
    _rate_limit: None = Depends(rate_limit("campaign_start", limit=30, window_seconds=60)),
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).start_campaign(campaign_id, business_id=ctx.business_id)
    return serialize_campaign(campaign)


@router.post("/{campaign_id}/complete")
async def complete_campaign(
    campaign_id: str,
    request: CompleteCampaignRequest,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).complete_campaign(
        campaign_id,
        actual_credits_used=request.actual_credits_used,
        output_urls=request.output_urls,
        thumbnail_url=request.thumbnail_url,
        metadata=request.metadata,
        business_id=ctx.business_id,
    )
    return serialize_campaign(campaign)


@router.post("/{campaign_id}/fail")
async def fail_campaign(
    campaign_id: str,
    request: Optional[FailCampaignRequest] = None,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).fail_campaign(
        campaign_id,
        error_message=request.error_message if request else None,
        business_id=ctx.business_id,
    )
    return serialize_campaign(campaign)


@router.post("/{campaign_id}/cancel")
async def cancel_campaign(
    campaign_id: str,
    ctx: BusinessContext = Depends(get_business_context),
    db: AsyncSession = Depends(get_db),
):
    campaign = await CampaignLifecycle(db).cancel_campaign(campaign_id, business_id=ctx.business_id)
    return serialize_campaign(campaign)
