import logging
from functools import lru_cache

from fastapi import Depends, Query, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.config import settings
from blog_api.database import get_db
from blog_api.errors import Forbidden, StaleSession, Unauthenticated, UserNotFound
from blog_api.listing import ListingParams
from blog_api.models import User
from blog_api.security import CredentialManager

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Listing parameters
# ---------------------------------------------------------------------------

def _coerce_positive(raw: str | None) -> int | None:
    """Parse a page/limit value; anything non-numeric or < 1 yields None."""
    if raw is None:
        return None
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return None
    return value if value >= 1 else None


def listing_params(
    page: str | None = Query(None, description="Page number (1-based)."),
    limit: str | None = Query(None, description="Items per page."),
    keyword: str | None = Query(None, description="Case-insensitive search term."),
    sort_field: str | None = Query(None, alias="sortField", description="Field to sort by."),
    sort_by: str | None = Query(None, alias="sortBy", description="Alias of sortField."),
    sort_order: str | None = Query(
        None, alias="sortOrder", description="'desc' for descending, anything else ascending."
    ),
) -> ListingParams:
    """
    Reusable dependency that turns raw listing query parameters into
    ``ListingParams``.

    Values are accepted as strings and coerced here rather than by FastAPI,
    so a malformed or zero ``page``/``limit`` falls back to the default
    instead of producing a 400.  ``limit`` is clamped to
    ``settings.MAX_PAGE_SIZE``.
    """
    parsed_limit = _coerce_positive(limit)
    if parsed_limit is not None:
        parsed_limit = min(parsed_limit, settings.MAX_PAGE_SIZE)
    return ListingParams(
        page=_coerce_positive(page) or 1,
        limit=parsed_limit,
        page_requested=bool(page),
        keyword=keyword.strip() if keyword and keyword.strip() else None,
        sort_field=sort_field or sort_by,
        sort_order=sort_order,
    )


def comment_page_params(
    page: str | None = Query(None, description="Page number (1-based)."),
    limit: str | None = Query(None, description="Items per page."),
) -> ListingParams:
    """Pagination-only variant for the per-article comment thread."""
    return listing_params(page=page, limit=limit, keyword=None, sort_field=None, sort_by=None, sort_order=None)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@lru_cache
def get_credential_manager() -> CredentialManager:
    return CredentialManager.from_settings(settings)


# ---------------------------------------------------------------------------
# Access guard
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


class AccessGuard:
    """
    Dependency gating a route on an authenticated, active user and,
    optionally, a set of roles.

    Each check short-circuits with its own error:

    1. no bearer token                        -> ``Unauthenticated``
    2. bad signature / expired token          -> ``InvalidToken``
    3. user missing or deactivated            -> ``UserNotFound``
    4. token issued before a password change  -> ``StaleSession``
    5. role not allowed                       -> ``Forbidden``

    The password-change check runs against the freshly loaded user on
    every request.  The admitted user is stored on ``request.state.user``
    and returned.
    """

    def __init__(self, *roles: str) -> None:
        self.roles = frozenset(roles)

    async def __call__(
        self,
        request: Request,
        token: str | None = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db),
        credentials: CredentialManager = Depends(get_credential_manager),
    ) -> User:
        if not token:
            raise Unauthenticated()

        claims = credentials.verify_token(token)

        user = await db.get(User, claims.user_id)
        if user is None or not user.is_active:
            logger.info("Rejected token for missing or inactive user id=%s", claims.user_id)
            raise UserNotFound()

        if credentials.password_changed_after(claims.issued_at, user.password_changed_at):
            raise StaleSession()

        if self.roles and user.role not in self.roles:
            logger.warning(
                "User id=%s with role=%r denied %s %s",
                user.id, user.role, request.method, request.url.path,
            )
            raise Forbidden()

        request.state.user = user
        return user


protect = AccessGuard()
admin_only = AccessGuard("admin")


def ensure_self_or_admin(user: User, owner_id: int) -> None:
    if user.role != "admin" and user.id != owner_id:
        raise Forbidden()
