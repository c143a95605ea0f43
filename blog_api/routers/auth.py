from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession
from blog_api.config import settings
from blog_api.database import get_db
from blog_api.dependencies import get_credential_manager, protect
from blog_api.models import User
from blog_api.schemas import LoginRequest, PasswordChangeRequest, SignupRequest
from blog_api.security import CredentialManager
from blog_api.services import auth_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

COOKIE_NAME = "jwt"


def _send_token(response: Response, user: dict, token: str) -> dict:
    """Set the session cookie and build the token envelope."""
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=settings.COOKIE_EXPIRES_IN_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=not settings.is_local,
        samesite="lax",
    )
    return {"status": "success", "data": {"token": token, "user": user}}

@router.post("/signup", status_code=201)
async def signup(
    data: SignupRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    credentials: CredentialManager = Depends(get_credential_manager),
):
    user, token = await auth_service.signup(db, data, credentials)
    return _send_token(response, user, token)

@router.post("/login")
async def login(
    data: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    credentials: CredentialManager = Depends(get_credential_manager),
):
    user, token = await auth_service.login(db, data, credentials)
    return _send_token(response, user, token)

@router.patch("/{user_id}")
async def change_password(
    user_id: int,
    data: PasswordChangeRequest,
    response: Response,
    actor: User = Depends(protect),
    db: AsyncSession = Depends(get_db),
    credentials: CredentialManager = Depends(get_credential_manager),
):
    user, token = await auth_service.change_password(db, user_id, data, actor, credentials)
    return _send_token(response, user, token)
