"""
Auth service — signup, login and the password lifecycle.

Every function returns ``(user_dict, token)`` so the router can put the
token both in the body and in the session cookie.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.errors import AuthenticationError, Forbidden, ValidationError
from blog_api.models import User
from blog_api.schemas import LoginRequest, PasswordChangeRequest, SignupRequest
from blog_api.security import CredentialManager
from blog_api.services.user_service import get_user_by_email, user_to_dict

logger = logging.getLogger(__name__)


async def signup(
    db: AsyncSession, data: SignupRequest, credentials: CredentialManager
) -> tuple[dict, str]:
    """
    Create a regular user and issue their first token.

    Password confirmation has already been checked by the schema; the
    email's uniqueness is enforced by the database and reported as a
    ``ValidationError``.
    """
    if await get_user_by_email(db, data.email) is not None:
        raise ValidationError("Email already exists")

    user = User(
        full_name=data.full_name,
        user_name=data.user_name,
        email=data.email,
        password=await credentials.hash_password(data.password),
        avatar=data.avatar,
        role="user",
        is_active=True,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ValidationError("Email already exists") from exc

    logger.info("New user signed up: id=%s", user.id)
    return user_to_dict(user), credentials.issue_token(user.id)


async def login(
    db: AsyncSession, data: LoginRequest, credentials: CredentialManager
) -> tuple[dict, str]:
    if not data.email or not data.password:
        raise ValidationError("Email and password cannot be empty")

    user = await get_user_by_email(db, data.email)
    # Unknown emails still pay for one bcrypt check.
    hashed = user.password if user is not None else await credentials.dummy_hash()
    matched = await credentials.verify_password(data.password, hashed)
    if user is None or not user.is_active or not matched:
        logger.info("Failed login attempt for %s", data.email)
        raise AuthenticationError("Incorrect email or password")

    return user_to_dict(user), credentials.issue_token(user.id)


async def change_password(
    db: AsyncSession,
    user_id: int,
    data: PasswordChangeRequest,
    actor: User,
    credentials: CredentialManager,
) -> tuple[dict, str]:
    """
    Change the caller's own password.

    Stamps ``password_changed_at`` so every token issued before this moment
    is rejected as stale, then issues a fresh token for the caller.
    """
    if actor.id != user_id:
        raise Forbidden("You can only change your own password")

    if not await credentials.verify_password(data.current_password, actor.password):
        raise ValidationError("Incorrect password")

    actor.password = await credentials.hash_password(data.password)
    actor.password_changed_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("Password changed for user id=%s", actor.id)
    return user_to_dict(actor), credentials.issue_token(actor.id)
