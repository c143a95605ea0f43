from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from blog_api.database import get_db
from blog_api.dependencies import admin_only, ensure_self_or_admin, listing_params, protect
from blog_api.listing import ListingParams
from blog_api.models import User
from blog_api.schemas import UserUpdate
from blog_api.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.get("")
async def list_users(
    params: ListingParams = Depends(listing_params),
    _: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    page = await user_service.get_users(db, params)
    return {"status": "success", "data": page.model_dump(by_alias=True)}

@router.get("/{user_id}")
async def get_user(
    user_id: int,
    _: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_user(db, user_id)
    return {"status": "success", "data": {"user": user}}

@router.patch("/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    actor: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    ensure_self_or_admin(actor, user_id)
    user = await user_service.update_user(db, user_id, data, actor)
    return {"status": "success", "data": {"user": user}}
