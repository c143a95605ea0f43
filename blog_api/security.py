"""
Credential manager — password hashing and the signed session token.

A ``CredentialManager`` is built from explicit configuration and handed to
request handlers through the ``get_credential_manager`` dependency, so tests
can swap in a cheaper bcrypt cost or a different secret without touching
module globals.

Tokens are HS256 JWTs carrying the user id (``sub``), the issue time
(``iat``, kept with sub-second precision) and an expiry (``exp``).  The
issue time is what lets the access guard reject tokens minted before the
user's last password change.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt
from starlette.concurrency import run_in_threadpool

from blog_api.config import Settings
from blog_api.errors import InvalidToken


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    issued_at: datetime


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CredentialManager:
    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_in: timedelta = timedelta(days=90),
        bcrypt_rounds: int = 12,
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expires_in = expires_in
        self.bcrypt_rounds = bcrypt_rounds
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialManager":
        return cls(
            secret_key=settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
            expires_in=timedelta(days=settings.JWT_EXPIRES_IN_DAYS),
            bcrypt_rounds=settings.BCRYPT_ROUNDS,
        )

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def _hash(self, plain: str) -> str:
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _check(plain: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash in storage.
            return False

    async def hash_password(self, plain: str) -> str:
        """Return a salted bcrypt hash of *plain* (computed off the event loop)."""
        return await run_in_threadpool(self._hash, plain)

    async def verify_password(self, plain: str, hashed: str) -> bool:
        """Constant-time check of *plain* against a stored bcrypt hash."""
        if not plain or not hashed:
            return False
        return await run_in_threadpool(self._check, plain, hashed)

    async def dummy_hash(self) -> str:
        """
        A throwaway hash at this manager's cost, for checks that have no
        stored hash to compare against (login with an unknown email).
        """
        if self._dummy_hash is None:
            self._dummy_hash = await self.hash_password(secrets.token_urlsafe(16))
        return self._dummy_hash

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, user_id: int, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + self.expires_in
        claims = {
            "sub": str(user_id),
            # Passed as a float so python-jose does not truncate it to whole seconds.
            "iat": issued_at.timestamp(),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> TokenClaims:
        """
        Decode *token* and return its claims.

        Raises ``InvalidToken`` for a bad signature, an expired or malformed
        token, or a token without a usable subject / issue time.
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            raise InvalidToken() from exc

        try:
            user_id = int(payload["sub"])
            issued_at = datetime.fromtimestamp(float(payload["iat"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc
        return TokenClaims(user_id=user_id, issued_at=issued_at)

    @staticmethod
    def password_changed_after(
        issued_at: datetime, password_changed_at: datetime | None
    ) -> bool:
        """True when the password was changed after the token was issued."""
        if password_changed_at is None:
            return False
        return _as_utc(password_changed_at) > _as_utc(issued_at)
