from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from blog_api.database import get_db
from blog_api.dependencies import admin_only, listing_params, protect
from blog_api.listing import ListingParams
from blog_api.models import User
from blog_api.schemas import ArticleCreate, ArticlePatch
from blog_api.services import article_service

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])

@router.get("")
async def list_articles(
    params: ListingParams = Depends(listing_params),
    db: AsyncSession = Depends(get_db),
):
    page = await article_service.get_articles(db, params)
    return {"status": "success", "data": page.model_dump(by_alias=True)}

@router.get("/{slug}")
async def get_article(slug: str, db: AsyncSession = Depends(get_db)):
    article = await article_service.get_article_by_slug(db, slug)
    return {"status": "success", "data": {"article": article}}

@router.post("", status_code=201)
async def create_article(
    data: ArticleCreate,
    user: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.create_article(db, data, user)
    return {"status": "success", "data": {"article": article}}

@router.patch("/{article_id}")
async def update_article(
    article_id: int,
    data: ArticlePatch,
    user: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    article = await article_service.patch_article(db, article_id, data, user)
    return {"status": "success", "data": {"article": article}}
