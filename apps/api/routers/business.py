"""Business setup router."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, BusinessContext, get_auth_context, get_business_context
from services.businesses import create_business, get_business_for_user, serialize_business
from services.errors import NotFoundError

router = APIRouter()


class CreateBusinessRequest(BaseModel):
    business_name: str = Field(min_length=1, max_length=200)


@router.post("", status_code=201)
async def setup_business(
    request: CreateBusinessRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        await get_business_for_user(db, auth.user_id)
    except NotFoundError:
        business = await create_business(
            db,
            user_id=auth.user_id,
            business_name=request.business_name,
            email=auth.email,
        )
        return serialize_business(business)
    raise HTTPException(status_code=409, detail="Business already exists for this user.")


@router.get("")
async def get_business(ctx: BusinessContext = Depends(get_business_context)):
    return serialize_business(ctx.business)
