"""
User service — reads and profile updates for the User aggregate.

Users are fetched without caching.  A profile change drops every cached
article read, since users are embedded in them.  The password hash never
leaves this module's serialisers.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blog_api.cache import cache
from blog_api.config import settings
from blog_api.errors import Forbidden, NotFoundError, ValidationError
from blog_api.listing import ListingParams, ListingDefinition, paginate, sort_aliases
from blog_api.models import Article, User
from blog_api.schemas import PaginatedResponse, UserUpdate

USER_LISTING = ListingDefinition(
    model=User,
    default_limit=settings.USERS_PAGE_SIZE,
    sort_fields=sort_aliases("created_at", "full_name", "user_name", "email", "role"),
    searchable_fields=("user_name", "full_name", "email"),
)


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def user_to_dict(user: User | None) -> dict | None:
    """Public representation of a user (never includes the password hash)."""
    if user is None:
        return None
    return {
        "id": user.id,
        "fullName": user.full_name,
        "userName": user.user_name,
        "email": user.email,
        "avatar": user.avatar,
        "role": user.role,
        "isActive": user.is_active,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def _user_detail_to_dict(user: User) -> dict:
    data = user_to_dict(user)
    data["savedArticles"] = [
        {"id": a.id, "title": a.title, "slug": a.slug} for a in user.saved_articles
    ]
    return data


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def _load_user(db: AsyncSession, user_id: int) -> User:
    q = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.saved_articles))
        .execution_options(populate_existing=True)
    )
    user = (await db.execute(q)).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User does not exist")
    return user


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_users(db: AsyncSession, params: ListingParams) -> PaginatedResponse:
    """Searchable, sortable, paginated user list."""
    return await paginate(db, USER_LISTING, params, user_to_dict)


async def get_user(db: AsyncSession, user_id: int) -> dict:
    return _user_detail_to_dict(await _load_user(db, user_id))


async def update_user(
    db: AsyncSession, user_id: int, data: UserUpdate, actor: User
) -> dict:
    """
    Apply a partial profile update.

    Passwords cannot be changed here (see ``auth_service.change_password``).
    ``role`` and ``is_active`` may only be set by an admin.  A duplicate
    email is reported as a ``ValidationError``.
    """
    update_data = data.model_dump(exclude_unset=True)
    if actor.role != "admin" and ({"role", "is_active"} & update_data.keys()):
        raise Forbidden("Only admins can change roles or account status")

    user = await _load_user(db, user_id)
    saved_ids = update_data.pop("saved_articles", None)

    for field, value in update_data.items():
        if value is not None:
            setattr(user, field, value)

    if saved_ids is not None:
        unique_ids = list(dict.fromkeys(saved_ids))
        articles = []
        if unique_ids:
            rows = await db.execute(select(Article).where(Article.id.in_(unique_ids)))
            articles = list(rows.scalars().all())
        if len(articles) != len(unique_ids):
            raise NotFoundError("One or more saved articles do not exist")
        user.saved_articles = articles

    try:
        await db.flush()
    except IntegrityError as exc:
        raise ValidationError("Email already exists") from exc

    # Users are embedded in cached article reads.
    cache.invalidate_all_articles(db)

    return _user_detail_to_dict(await _load_user(db, user_id))
