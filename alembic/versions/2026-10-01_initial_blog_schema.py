"""Initial blog schema: users, tags, articles, comments

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(150), nullable=False),
        sa.Column("user_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password", sa.String(255), nullable=False),
        sa.Column("avatar", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_user_name", "users", ["user_name"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
    )
    op.create_index("ix_tags_name", "tags", ["name"])

    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("slug", sa.String(350), nullable=False, unique=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("num_likes", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.Column(
            "author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.CheckConstraint("num_likes >= 0", name="ck_articles_num_likes_non_negative"),
    )
    op.create_index("ix_articles_title", "articles", ["title"])
    op.create_index("ix_articles_slug", "articles", ["slug"])
    op.create_index("ix_articles_author_id", "articles", ["author_id"])
    op.create_index("ix_articles_is_public_created_at", "articles", ["is_public", "created_at"])
    op.create_index("ix_articles_num_likes", "articles", ["num_likes"])

    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("body", sa.Text(), nullable=False),
        *_timestamps(),
        sa.Column(
            "article_id", sa.Integer(), sa.ForeignKey("articles.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("comments.id"), nullable=True),
        sa.Column(
            "reply_to_id", sa.Integer(), sa.ForeignKey("comments.id", ondelete="SET NULL"), nullable=True
        ),
    )
    op.create_index("ix_comments_user_id", "comments", ["user_id"])
    op.create_index("ix_comments_parent_id", "comments", ["parent_id"])
    op.create_index("ix_comments_article_id_created_at", "comments", ["article_id", "created_at"])

    for name, left, right in (
        ("article_tags", ("article_id", "articles"), ("tag_id", "tags")),
        ("article_likes", ("article_id", "articles"), ("user_id", "users")),
        ("saved_articles", ("user_id", "users"), ("article_id", "articles")),
    ):
        op.create_table(
            name,
            *(
                sa.Column(
                    column,
                    sa.Integer(),
                    sa.ForeignKey(f"{table}.id", ondelete="CASCADE"),
                    primary_key=True,
                )
                for column, table in (left, right)
            ),
        )


def downgrade() -> None:
    for name in ("saved_articles", "article_likes", "article_tags"):
        op.drop_table(name)
    op.drop_table("comments")
    op.drop_table("articles")
    op.drop_table("tags")
    op.drop_table("users")
