import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _normalise_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- User / auth ---

class SignupRequest(CamelModel):
    full_name: str = Field(min_length=1, max_length=150)
    user_name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255)
    # bcrypt only looks at the first 72 bytes.
    password: str = Field(min_length=8, max_length=72)
    password_confirm: str
    avatar: str | None = Field(None, max_length=500)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _normalise_email(value)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class LoginRequest(CamelModel):
    email: str | None = None
    password: str | None = None


class PasswordChangeRequest(CamelModel):
    current_password: str
    password: str = Field(min_length=8, max_length=72)
    password_confirm: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.password_confirm:
            raise ValueError("Passwords do not match")
        return self


class UserUpdate(CamelModel):
    """Profile update. ``role`` and ``isActive`` are honoured for admins only."""

    full_name: str | None = Field(None, min_length=1, max_length=150)
    user_name: str | None = Field(None, min_length=1, max_length=100)
    email: str | None = Field(None, max_length=255)
    avatar: str | None = Field(None, max_length=500)
    saved_articles: list[int] | None = None
    role: Literal["user", "admin"] | None = None
    is_active: bool | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, value: str | None) -> str | None:
        return _normalise_email(value) if value is not None else value


# --- Comment ---

class CommentCreate(CamelModel):
    # Optional at the schema level so the service can report both together.
    article_id: int | None = Field(None, alias="articleID")
    user_id: int | None = Field(None, alias="userID")
    body: str = Field(min_length=1)
    parent: int | None = None
    reply_to: int | None = None


class CommentUpdate(CamelModel):
    body: str = Field(min_length=1)


# --- Article ---

class ArticleCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    tags: list[str] = []
    is_public: bool = True
    # Defaults to the calling admin.
    author_id: int | None = None


class ArticlePatch(CamelModel):
    """
    ``PATCH /articles/{id}`` body.

    ``{"type": "heart", "email": ...}`` toggles the like of the user with
    that email (the caller's own unless the caller is an admin); any other
    body is a partial field update.
    """

    type: Literal["heart"] | None = None
    email: str | None = None
    title: str | None = Field(None, min_length=1, max_length=200)
    body: str | None = Field(None, min_length=1)
    is_public: bool | None = None
    tags: list[str] | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, value: str | None) -> str | None:
        return _normalise_email(value) if value is not None else value


# --- Pagination ---

class PaginatedResponse(CamelModel):
    results: int
    total: int
    page: int
    limit: int
    total_pages: int
    items: list
