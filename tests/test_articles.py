"""
Article endpoint tests — creation (admin only), the public listing with
search / sort / pagination, detail by slug, field updates and the like
toggle.

Each test creates the users and articles it needs, so test order does not
matter.
"""
import math

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.models import Article, article_likes


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_article(client: AsyncClient, headers: dict, **fields) -> dict:
    payload = {"title": "Test Article", "body": "Body text", **fields}
    resp = await client.post("/api/v1/articles", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["article"]


async def _heart(client: AsyncClient, article_id: int, email: str, headers: dict):
    return await client.patch(
        f"/api/v1/articles/{article_id}",
        json={"type": "heart", "email": email},
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Infrastructure / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_diagnostic_headers(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/articles")
    assert "x-response-time-ms" in resp.headers
    assert int(resp.headers["x-query-count"]) >= 1


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admin_creates_article(async_client: AsyncClient, admin):
    admin_user, headers = admin
    article = await _create_article(
        async_client, headers, title="Hello World! This is a Test.", tags=["python", "fastapi"]
    )
    assert article["slug"] == "hello-world-this-is-a-test"
    assert article["author"]["id"] == admin_user.id
    assert "password" not in article["author"]
    assert sorted(article["tags"]) == ["fastapi", "python"]
    assert article["numLikes"] == 0
    assert article["likedUsers"] == []
    assert article["isPublic"] is True


@pytest.mark.asyncio
async def test_create_requires_admin(async_client: AsyncClient, member):
    _, headers = member
    resp = await async_client.post(
        "/api/v1/articles", json={"title": "T", "body": "B"}, headers=headers
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_create_requires_login(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/articles", json={"title": "T", "body": "B"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_with_empty_body(async_client: AsyncClient, admin):
    _, headers = admin
    resp = await async_client.post("/api/v1/articles", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["status"] == "fail"


@pytest.mark.asyncio
async def test_duplicate_titles_get_distinct_slugs(async_client: AsyncClient, admin):
    _, headers = admin
    first = await _create_article(async_client, headers, title="Same Title")
    second = await _create_article(async_client, headers, title="Same Title")
    third = await _create_article(async_client, headers, title="Same Title")
    assert [first["slug"], second["slug"], third["slug"]] == [
        "same-title", "same-title-2", "same-title-3",
    ]


@pytest.mark.asyncio
async def test_create_for_unknown_author(async_client: AsyncClient, admin):
    _, headers = admin
    resp = await async_client.post(
        "/api/v1/articles", json={"title": "T", "body": "B", "authorId": 999}, headers=headers
    )
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_articles_empty(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/articles")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["items"] == []
    assert data["results"] == 0
    assert data["totalPages"] == 0


@pytest.mark.asyncio
async def test_private_article_hidden_from_list_but_served_by_slug(
    async_client: AsyncClient, admin
):
    _, headers = admin
    await _create_article(async_client, headers, title="Public Post")
    resp = await async_client.post(
        "/api/v1/articles",
        json={"title": "Secret Draft", "body": "Body text", "isPublic": False},
        headers=headers,
    )
    assert resp.status_code == 201
    private = resp.json()["data"]["article"]
    assert private["isPublic"] is False

    listing = (await async_client.get("/api/v1/articles")).json()["data"]
    assert [a["title"] for a in listing["items"]] == ["Public Post"]
    assert listing["total"] == 1

    detail = await async_client.get(f"/api/v1/articles/{private['slug']}")
    assert detail.status_code == 200
    assert detail.json()["data"]["article"]["title"] == "Secret Draft"
    assert detail.json()["data"]["article"]["isPublic"] is False


@pytest.mark.asyncio
async def test_article_keys_are_camel_case(async_client: AsyncClient, admin):
    _, headers = admin
    article = await _create_article(async_client, headers)
    assert {"isPublic", "numLikes", "likedUsers", "authorId", "createdAt", "updatedAt"} <= set(article)
    assert not {"is_public", "num_likes", "liked_users", "author_id"} & set(article)
    assert {"fullName", "userName", "isActive"} <= set(article["author"])


@pytest.mark.asyncio
async def test_list_default_limit_is_five(async_client: AsyncClient, admin):
    _, headers = admin
    for i in range(7):
        await _create_article(async_client, headers, title=f"Article {i}")

    data = (await async_client.get("/api/v1/articles")).json()["data"]
    assert data["results"] == 5
    assert data["limit"] == 5
    assert data["totalPages"] == 2


@pytest.mark.asyncio
async def test_list_pagination(async_client: AsyncClient, admin):
    _, headers = admin
    for i in range(7):
        await _create_article(async_client, headers, title=f"Article {i}")

    data = (await async_client.get("/api/v1/articles?page=3&limit=3")).json()["data"]
    assert data["results"] == 1
    assert data["totalPages"] == math.ceil(7 / 3)
    assert data["items"][0]["title"] == "Article 6"


@pytest.mark.asyncio
async def test_list_page_out_of_range(async_client: AsyncClient, admin):
    _, headers = admin
    await _create_article(async_client, headers)
    resp = await async_client.get("/api/v1/articles?page=2")
    assert resp.status_code == 404
    assert resp.json() == {"status": "fail", "message": "This page does not exist"}


@pytest.mark.asyncio
async def test_list_malformed_paging_falls_back(async_client: AsyncClient, admin):
    _, headers = admin
    await _create_article(async_client, headers)
    resp = await async_client.get("/api/v1/articles?page=abc&limit=0")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["page"] == 1
    assert data["limit"] == 5


@pytest.mark.asyncio
async def test_list_keyword_matches_title_and_tags(async_client: AsyncClient, admin):
    _, headers = admin
    await _create_article(async_client, headers, title="Learning FastAPI")
    await _create_article(async_client, headers, title="Cooking pasta", tags=["fastapi-adjacent"])
    await _create_article(async_client, headers, title="Gardening", tags=["plants"])

    data = (await async_client.get("/api/v1/articles?keyword=FASTAPI")).json()["data"]
    assert sorted(a["title"] for a in data["items"]) == ["Cooking pasta", "Learning FastAPI"]
    assert data["total"] == 2
    assert data["totalPages"] == 1


@pytest.mark.asyncio
async def test_list_sort_by_title_desc(async_client: AsyncClient, admin):
    _, headers = admin
    for title in ("Bravo", "Alpha", "Charlie"):
        await _create_article(async_client, headers, title=title)

    data = (await async_client.get("/api/v1/articles?sortBy=title&sortOrder=desc")).json()["data"]
    assert [a["title"] for a in data["items"]] == ["Charlie", "Bravo", "Alpha"]

    data = (await async_client.get("/api/v1/articles?sortField=title&sortOrder=up")).json()["data"]
    assert [a["title"] for a in data["items"]] == ["Alpha", "Bravo", "Charlie"]


@pytest.mark.asyncio
async def test_list_joins_author_and_liked_users(async_client: AsyncClient, admin, member):
    _, admin_headers = admin
    _, member_headers = member
    article = await _create_article(async_client, admin_headers)
    await _heart(async_client, article["id"], "member@example.com", member_headers)

    item = (await async_client.get("/api/v1/articles")).json()["data"]["items"][0]
    assert item["author"]["email"] == "admin@example.com"
    assert [u["email"] for u in item["likedUsers"]] == ["member@example.com"]


# ---------------------------------------------------------------------------
# Detail
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_article_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/articles/no-such-slug")
    assert resp.status_code == 404
    assert resp.json() == {"status": "fail", "message": "The article does not exist"}


@pytest.mark.asyncio
async def test_get_article_includes_comments(async_client: AsyncClient, admin, member):
    _, admin_headers = admin
    member_user, member_headers = member
    article = await _create_article(async_client, admin_headers)
    await async_client.post("/api/v1/comments", headers=member_headers, json={
        "articleID": article["id"], "userID": member_user.id, "body": "Nice post",
    })

    detail = (await async_client.get(f"/api/v1/articles/{article['slug']}")).json()["data"]["article"]
    assert [c["body"] for c in detail["comments"]] == ["Nice post"]
    assert detail["comments"][0]["user"]["id"] == member_user.id


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admin_updates_fields(async_client: AsyncClient, admin):
    _, headers = admin
    article = await _create_article(async_client, headers, tags=["old"])
    resp = await async_client.patch(f"/api/v1/articles/{article['id']}", headers=headers, json={
        "title": "Renamed Article",
        "isPublic": False,
        "tags": ["new", "shiny"],
    })
    assert resp.status_code == 200
    updated = resp.json()["data"]["article"]
    assert updated["title"] == "Renamed Article"
    assert updated["slug"] == "renamed-article"
    assert updated["isPublic"] is False
    assert sorted(updated["tags"]) == ["new", "shiny"]
    assert updated["body"] == "Body text"


@pytest.mark.asyncio
async def test_field_update_requires_admin(async_client: AsyncClient, admin, member):
    _, admin_headers = admin
    _, member_headers = member
    article = await _create_article(async_client, admin_headers)
    resp = await async_client.patch(
        f"/api/v1/articles/{article['id']}", headers=member_headers, json={"title": "Hijack"}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_update_missing_article(async_client: AsyncClient, admin):
    _, headers = admin
    resp = await async_client.patch("/api/v1/articles/999", headers=headers, json={"title": "X"})
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Like toggle
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_heart_twice_restores_original_state(async_client: AsyncClient, admin, member):
    _, admin_headers = admin
    _, member_headers = member
    article = await _create_article(async_client, admin_headers)

    first = (await _heart(async_client, article["id"], "member@example.com", member_headers)).json()
    assert first["data"]["article"]["numLikes"] == 1
    assert len(first["data"]["article"]["likedUsers"]) == 1

    second = (await _heart(async_client, article["id"], "member@example.com", member_headers)).json()
    assert second["data"]["article"]["numLikes"] == 0
    assert second["data"]["article"]["likedUsers"] == []


@pytest.mark.asyncio
async def test_like_count_matches_liked_users(
    async_client: AsyncClient, db_session: AsyncSession, admin, create_user
):
    _, admin_headers = admin
    article = await _create_article(async_client, admin_headers)
    emails = [f"fan{i}@x.com" for i in range(4)]
    fans = {}
    for email in emails:
        _, fans[email] = await create_user(email)

    # fan0 x3, fan1 x2, fan2 x1, fan3 x0 -> fan0 and fan2 end up liking it
    for email, times in zip(emails, (3, 2, 1, 0)):
        for _ in range(times):
            resp = await _heart(async_client, article["id"], email, fans[email])
            assert resp.status_code == 200
            body = resp.json()["data"]["article"]
            assert body["numLikes"] == len(body["likedUsers"])

    stored = await db_session.get(Article, article["id"])
    rows = (
        await db_session.execute(
            select(func.count()).select_from(article_likes).where(
                article_likes.c.article_id == article["id"]
            )
        )
    ).scalar_one()
    assert stored.num_likes == rows == 2


@pytest.mark.asyncio
async def test_member_cannot_heart_as_someone_else(
    async_client: AsyncClient, db_session: AsyncSession, admin, member, create_user
):
    _, admin_headers = admin
    _, member_headers = member
    await create_user("victim@example.com")
    article = await _create_article(async_client, admin_headers)

    resp = await _heart(async_client, article["id"], "victim@example.com", member_headers)
    assert resp.status_code == 403
    assert resp.json()["status"] == "fail"

    stored = await db_session.get(Article, article["id"])
    assert stored.num_likes == 0
    rows = (
        await db_session.execute(select(func.count()).select_from(article_likes))
    ).scalar_one()
    assert rows == 0


@pytest.mark.asyncio
async def test_admin_hearts_on_behalf_of_a_user(async_client: AsyncClient, admin, member):
    _, admin_headers = admin
    article = await _create_article(async_client, admin_headers)

    resp = await _heart(async_client, article["id"], "member@example.com", admin_headers)
    assert resp.status_code == 200
    body = resp.json()["data"]["article"]
    assert body["numLikes"] == 1
    assert [u["email"] for u in body["likedUsers"]] == ["member@example.com"]


@pytest.mark.asyncio
async def test_admin_hearts_for_unknown_email(async_client: AsyncClient, admin):
    _, headers = admin
    article = await _create_article(async_client, headers)
    resp = await _heart(async_client, article["id"], "a@x.com", headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "User is not found"


@pytest.mark.asyncio
async def test_heart_requires_email(async_client: AsyncClient, admin):
    _, headers = admin
    article = await _create_article(async_client, headers)
    resp = await async_client.patch(
        f"/api/v1/articles/{article['id']}", headers=headers, json={"type": "heart"}
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_heart_missing_article(async_client: AsyncClient, member):
    _, headers = member
    resp = await _heart(async_client, 999, "member@example.com", headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Article is not found"


@pytest.mark.asyncio
async def test_heart_requires_login(async_client: AsyncClient, admin):
    _, headers = admin
    article = await _create_article(async_client, headers)
    resp = await async_client.patch(
        f"/api/v1/articles/{article['id']}", json={"type": "heart", "email": "admin@example.com"}
    )
    assert resp.status_code == 401
