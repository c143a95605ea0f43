"""
Comment service — threaded comments on articles.

Threads are one level deep: a comment is either top-level (no parent) or a
reply whose parent is a top-level comment.  ``reply_to`` records which
comment in the thread was being answered and is only used for display.
Deleting a top-level comment deletes its replies with it; deleting a reply
deletes only that reply.

Every write schedules the cached views of the parent article for removal
once the transaction commits.
"""
import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blog_api.cache import cache
from blog_api.config import settings
from blog_api.dependencies import ensure_self_or_admin
from blog_api.errors import NotFoundError, ValidationError
from blog_api.listing import ListingParams, ListingDefinition, paginate
from blog_api.models import Article, Comment, User
from blog_api.schemas import CommentCreate, CommentUpdate
from blog_api.services.user_service import user_to_dict

logger = logging.getLogger(__name__)

COMMENT_LISTING = ListingDefinition(
    model=Comment,
    default_limit=settings.COMMENTS_PAGE_SIZE,
    sort_fields={},
    default_sort="created_at",
    default_order="desc",
    loader_options=(
        selectinload(Comment.user),
        selectinload(Comment.reply_to).selectinload(Comment.user),
    ),
)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _comment_to_dict(comment: Comment) -> dict:
    reply_to = comment.reply_to
    return {
        "id": comment.id,
        "body": comment.body,
        "articleID": comment.article_id,
        "userID": comment.user_id,
        "user": user_to_dict(comment.user),
        "parent": comment.parent_id,
        "replyTo": (
            {"id": reply_to.id, "body": reply_to.body, "user": user_to_dict(reply_to.user)}
            if reply_to is not None
            else None
        ),
        "createdAt": comment.created_at.isoformat() if comment.created_at else None,
        "updatedAt": comment.updated_at.isoformat() if comment.updated_at else None,
    }


async def _load_comment(db: AsyncSession, comment_id: int) -> Comment:
    q = (
        select(Comment)
        .where(Comment.id == comment_id)
        .options(
            selectinload(Comment.article),
            *COMMENT_LISTING.loader_options,
        )
        .execution_options(populate_existing=True)
    )
    comment = (await db.execute(q)).scalar_one_or_none()
    if comment is None:
        raise NotFoundError("Comment does not exist")
    return comment


async def _get_thread_comment(db: AsyncSession, comment_id: int, article_id: int) -> Comment:
    comment = await db.get(Comment, comment_id)
    if comment is None or comment.article_id != article_id:
        raise NotFoundError("The comment being replied to does not exist on this article")
    return comment


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_comment(db: AsyncSession, data: CommentCreate, actor: User) -> dict:
    """
    Create a comment on an article.

    A ``parent`` that is itself a reply is replaced by that reply's own
    parent (the thread root), and the reply becomes ``reply_to`` unless one
    was given.  This keeps every reply directly under a top-level comment.
    """
    if not data.article_id or not data.user_id:
        raise ValidationError("Article ID and user ID are required")
    ensure_self_or_admin(actor, data.user_id)

    article = await db.get(Article, data.article_id)
    if article is None:
        raise NotFoundError("Article does not exist")
    if await db.get(User, data.user_id) is None:
        raise NotFoundError("User does not exist")

    parent_id = reply_to_id = None
    if data.parent is not None:
        parent = await _get_thread_comment(db, data.parent, article.id)
        parent_id = parent.parent_id or parent.id
        reply_to_id = parent.id if parent.parent_id else None
    if data.reply_to is not None:
        reply_to = await _get_thread_comment(db, data.reply_to, article.id)
        reply_to_id = reply_to.id

    comment = Comment(
        body=data.body,
        article_id=article.id,
        user_id=data.user_id,
        parent_id=parent_id,
        reply_to_id=reply_to_id,
    )
    db.add(comment)
    await db.flush()

    cache.invalidate_article(db, article.slug)
    return _comment_to_dict(await _load_comment(db, comment.id))


async def update_comment(
    db: AsyncSession, comment_id: int, data: CommentUpdate, actor: User
) -> dict:
    comment = await _load_comment(db, comment_id)
    ensure_self_or_admin(actor, comment.user_id)

    comment.body = data.body
    await db.flush()

    cache.invalidate_article(db, comment.article.slug)
    return _comment_to_dict(await _load_comment(db, comment_id))


async def delete_comment(db: AsyncSession, comment_id: int, actor: User) -> int:
    """
    Delete a comment and, when it is top-level, every reply in its thread.

    Replies are removed before their parent so the self-referencing foreign
    key is never violated.  Returns the number of comments removed.
    """
    comment = await _load_comment(db, comment_id)
    ensure_self_or_admin(actor, comment.user_id)
    slug = comment.article.slug

    removed_ids = [comment.id]
    if comment.parent_id is None:
        reply_ids = (
            await db.execute(select(Comment.id).where(Comment.parent_id == comment.id))
        ).scalars().all()
        removed_ids.extend(reply_ids)

    # Display-only references to removed comments are cleared, not cascaded.
    await db.execute(
        update(Comment)
        .where(Comment.reply_to_id.in_(removed_ids), Comment.id.not_in(removed_ids))
        .values(reply_to_id=None)
    )
    if len(removed_ids) > 1:
        await db.execute(delete(Comment).where(Comment.parent_id == comment.id))
    await db.execute(delete(Comment).where(Comment.id == comment.id))

    logger.info("Comment id=%s deleted by user id=%s (%d removed)", comment.id, actor.id, len(removed_ids))
    cache.invalidate_article(db, slug)
    return len(removed_ids)


async def list_by_article(db: AsyncSession, article_id: int, params: ListingParams) -> dict:
    """
    Return one newest-first page of an article's comments, split into
    top-level comments and replies.

    Pagination applies to the combined set; both partitions are views over
    the same page.
    """
    page = await paginate(
        db,
        COMMENT_LISTING,
        params,
        _comment_to_dict,
        base_filters=[Comment.article_id == article_id],
    )
    comments = page.items
    return {
        "results": page.results,
        "totalPages": page.total_pages,
        "comments": comments,
        "topComments": [c for c in comments if c["parent"] is None],
        "replyComments": [c for c in comments if c["parent"] is not None],
    }
