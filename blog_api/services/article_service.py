"""
Article service — business logic for the Article aggregate.

Design notes
------------
- Public list pages and detail-by-slug reads go through the cache-aside
  pattern (Redis, falling back to the database).  List cache keys encode
  every listing parameter.  Every write schedules the list pages and the
  affected detail entry for removal once its transaction commits.
- Reads use explicit eager loading: ``joinedload`` for the author
  (many-to-one) and ``selectinload`` for tags, liked users and comments.
  Relationships are ``lazy="noload"`` so an unplanned lazy load can never
  happen inside the async session.
- The like toggle is a locked read of the article row followed by a
  membership delete-or-insert and a relative ``num_likes`` update, all in
  the request transaction.  ``num_likes`` and the liked-user set therefore
  change together or not at all.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency.
"""
import logging
import re

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blog_api.cache import cache
from blog_api.config import settings
from blog_api.errors import Forbidden, NotFoundError, ValidationError
from blog_api.listing import ListingParams, ListingDefinition, paginate, sort_aliases
from blog_api.models import Article, Comment, Tag, User, article_likes
from blog_api.schemas import ArticleCreate, ArticlePatch, PaginatedResponse
from blog_api.services.user_service import get_user_by_email, user_to_dict

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")

ARTICLE_LISTING = ListingDefinition(
    model=Article,
    default_limit=settings.ARTICLES_PAGE_SIZE,
    sort_fields=sort_aliases("created_at", "updated_at", "title", "num_likes"),
    searchable_fields=("title", "tags.name"),
    loader_options=(
        joinedload(Article.author),
        selectinload(Article.liked_users),
        selectinload(Article.tags),
    ),
)

_DETAIL_OPTIONS = (
    joinedload(Article.author),
    selectinload(Article.tags),
    selectinload(Article.liked_users),
    selectinload(Article.comments).selectinload(Comment.user),
)


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


async def _unique_slug(db: AsyncSession, title: str, exclude_id: int | None = None) -> str:
    base = slugify(title) or "article"
    q = select(Article.id, Article.slug).where(Article.slug.startswith(base, autoescape=True))
    taken = {slug for article_id, slug in (await db.execute(q)).all() if article_id != exclude_id}
    slug, n = base, 2
    while slug in taken:
        slug = f"{base}-{n}"
        n += 1
    return slug


async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag rows for each distinct name in *tag_names*, creating any
    that do not yet exist within the caller's transaction.
    """
    names = list(dict.fromkeys(name.strip() for name in tag_names if name.strip()))
    tags: list[Tag] = []
    for name in names:
        tag = (await db.execute(select(Tag).where(Tag.name == name))).scalar_one_or_none()
        if not tag:
            tag = Tag(name=name)
            db.add(tag)
            await db.flush()
        tags.append(tag)
    return tags


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _article_to_dict(article: Article) -> dict:
    """Serialise an Article (list view) with its joined author and liked users."""
    return {
        "id": article.id,
        "title": article.title,
        "slug": article.slug,
        "body": article.body,
        "tags": [t.name for t in article.tags],
        "isPublic": article.is_public,
        "numLikes": article.num_likes,
        "authorId": article.author_id,
        "author": user_to_dict(article.author),
        "likedUsers": [user_to_dict(u) for u in article.liked_users],
        "createdAt": article.created_at.isoformat() if article.created_at else None,
        "updatedAt": article.updated_at.isoformat() if article.updated_at else None,
    }


def _article_detail_to_dict(article: Article) -> dict:
    data = _article_to_dict(article)
    data["comments"] = [
        {
            "id": c.id,
            "body": c.body,
            "user": user_to_dict(c.user),
            "parent": c.parent_id,
            "replyTo": c.reply_to_id,
            "createdAt": c.created_at.isoformat() if c.created_at else None,
        }
        for c in article.comments
    ]
    return data


async def _load_article(db: AsyncSession, *criteria) -> Article | None:
    q = (
        select(Article)
        .where(*criteria)
        .options(*_DETAIL_OPTIONS)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(q)).unique().scalar_one_or_none()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_articles(db: AsyncSession, params: ListingParams) -> PaginatedResponse:
    """Return one page of public articles matching *params*."""
    cache_key = (
        f"articles:list:{params.page}:{params.limit}:{int(params.page_requested)}:"
        f"{params.keyword}:{params.sort_field}:{params.sort_order}"
    )
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    response = await paginate(
        db,
        ARTICLE_LISTING,
        params,
        _article_to_dict,
        base_filters=[Article.is_public.is_(True)],
    )
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def get_article_by_slug(db: AsyncSession, slug: str) -> dict:
    """Full article by slug, public or not, with author, likes and comments."""
    cache_key = f"articles:detail:{slug}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    article = await _load_article(db, Article.slug == slug)
    if article is None:
        raise NotFoundError("The article does not exist")

    data = _article_detail_to_dict(article)
    await cache.set(cache_key, data, ttl=settings.CACHE_TTL_DETAIL)
    return data


async def create_article(db: AsyncSession, data: ArticleCreate, actor: User) -> dict:
    author_id = data.author_id or actor.id
    if await db.get(User, author_id) is None:
        raise NotFoundError("Author does not exist")

    article = Article(
        title=data.title,
        slug=await _unique_slug(db, data.title),
        body=data.body,
        is_public=data.is_public,
        num_likes=0,
        author_id=author_id,
    )
    if data.tags:
        article.tags.extend(await _resolve_tags(db, data.tags))

    db.add(article)
    await db.flush()
    logger.info("Article id=%s created by user id=%s", article.id, actor.id)

    cache.invalidate_article(db)
    return _article_detail_to_dict(await _load_article(db, Article.id == article.id))


async def update_article(db: AsyncSession, article_id: int, data: ArticlePatch) -> dict:
    """
    Partially update an article.  Only fields explicitly present in the
    payload are modified; a new title also regenerates the slug.
    """
    article = await _load_article(db, Article.id == article_id)
    if article is None:
        raise NotFoundError("Article is not found")
    old_slug = article.slug

    update_data = data.model_dump(exclude_unset=True, exclude={"type", "email"})
    tags_data: list[str] | None = update_data.pop("tags", None)

    for field, value in update_data.items():
        if value is not None:
            setattr(article, field, value)

    if update_data.get("title"):
        article.slug = await _unique_slug(db, update_data["title"], exclude_id=article.id)

    if tags_data is not None:
        article.tags = await _resolve_tags(db, tags_data)

    await db.flush()
    cache.invalidate_article(db, old_slug)
    if article.slug != old_slug:
        cache.invalidate_article(db, article.slug)
    return _article_detail_to_dict(await _load_article(db, Article.id == article_id))


async def toggle_like(db: AsyncSession, article_id: int, email: str) -> dict:
    """
    Flip the like of the user identified by *email* on the article.

    The article row is locked first (``SELECT ... FOR UPDATE``), so
    concurrent toggles on the same article are serialised.  Membership is
    a composite-key row: deleting it (unlike) or inserting it (like) and
    moving ``num_likes`` by the same ±1 happen in one transaction, which
    keeps ``num_likes == len(liked_users)``.
    """
    locked = await db.execute(
        select(Article.id, Article.slug).where(Article.id == article_id).with_for_update()
    )
    row = locked.one_or_none()
    if row is None:
        raise NotFoundError("Article is not found")

    user = await get_user_by_email(db, email)
    if user is None:
        raise NotFoundError("User is not found")

    membership = (article_likes.c.article_id == article_id) & (article_likes.c.user_id == user.id)
    removed = await db.execute(delete(article_likes).where(membership))
    if removed.rowcount:
        delta = -1
    else:
        await db.execute(insert(article_likes).values(article_id=article_id, user_id=user.id))
        delta = 1

    await db.execute(
        update(Article)
        .where(Article.id == article_id)
        .values(num_likes=Article.num_likes + delta)
    )
    logger.debug("User id=%s toggled like on article id=%s (%+d)", user.id, article_id, delta)

    cache.invalidate_article(db, row.slug)
    return _article_detail_to_dict(await _load_article(db, Article.id == article_id))


async def patch_article(
    db: AsyncSession, article_id: int, data: ArticlePatch, actor: User
) -> dict:
    """
    Dispatch ``PATCH /articles/{id}``: a ``{"type": "heart"}`` body toggles
    the caller's own like (admins may toggle on behalf of any user);
    anything else is an admin field update.
    """
    if data.type == "heart":
        if not data.email:
            raise ValidationError("An email is required to heart an article")
        if actor.role != "admin" and data.email != actor.email:
            raise Forbidden("You can only like or unlike articles as yourself")
        return await toggle_like(db, article_id, data.email)

    if actor.role != "admin":
        raise Forbidden()
    return await update_article(db, article_id, data)
