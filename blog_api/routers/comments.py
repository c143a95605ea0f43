from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from blog_api.database import get_db
from blog_api.dependencies import comment_page_params, protect
from blog_api.listing import ListingParams
from blog_api.models import User
from blog_api.schemas import CommentCreate, CommentUpdate
from blog_api.services import comment_service

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])

@router.post("", status_code=201)
async def create_comment(
    data: CommentCreate,
    user: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.create_comment(db, data, user)
    return {"status": "success", "data": {"comment": comment}}

@router.patch("/{comment_id}")
async def update_comment(
    comment_id: int,
    data: CommentUpdate,
    user: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    comment = await comment_service.update_comment(db, comment_id, data, user)
    return {"status": "success", "data": {"comment": comment}}

@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: int,
    user: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
):
    deleted = await comment_service.delete_comment(db, comment_id, user)
    return {
        "status": "success",
        "message": "Comment deleted successfully",
        "data": {"deleted": deleted},
    }

@router.get("/articles/{article_id}")
async def list_article_comments(
    article_id: int,
    params: ListingParams = Depends(comment_page_params),
    db: AsyncSession = Depends(get_db),
):
    thread = await comment_service.list_by_article(db, article_id, params)
    return {"status": "success", "data": thread}
