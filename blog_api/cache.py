import json
import logging

import redis.asyncio as redis

from blog_api.config import settings

logger = logging.getLogger(__name__)

ARTICLE_LIST_PATTERN = "articles:list:*"
PENDING_KEY = "pending_cache_invalidations"


class CacheManager:
    """
    Cache-aside manager backed by Redis, used for the public article reads
    (list pages and detail by slug).

    All public methods are safe to call when Redis is unavailable: reads
    return None and writes are skipped, so the API keeps working straight
    from the database.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed — cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        """Close the connection pool.  Called once at application shutdown."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
            return json.loads(data) if data is not None else None
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching *pattern* using SCAN (avoids blocking KEYS)."""
        if not self._redis:
            return
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Cache invalidated %d key(s) matching %r", len(keys), pattern)
        except Exception as exc:
            logger.debug("Cache DELETE_PATTERN error for pattern=%r: %s", pattern, exc)

    # ------------------------------------------------------------------
    # Commit-aligned invalidation
    # ------------------------------------------------------------------
    #
    # Writes record patterns on the request's session.  ``get_db`` deletes
    # them only after the commit succeeds and drops them on rollback.

    def _schedule(self, db, *patterns: str) -> None:
        db.info.setdefault(PENDING_KEY, set()).update(patterns)

    def invalidate_article(self, db, slug: str | None = None) -> None:
        """
        Schedule every cached list page, plus the detail entry for *slug*
        when given, for removal.  Called after any write that changes what
        an article read returns (article fields, likes, comments).
        """
        self._schedule(db, ARTICLE_LIST_PATTERN)
        if slug is not None:
            self._schedule(db, f"articles:detail:{slug}")

    def invalidate_all_articles(self, db) -> None:
        """
        Schedule every article entry for removal.  Used when a user changes,
        since users are embedded in article reads as author, liker or
        commenter.
        """
        self._schedule(db, "articles:*")

    async def apply_pending(self, db) -> None:
        for pattern in sorted(db.info.pop(PENDING_KEY, ())):
            await self.delete_pattern(pattern)

    def discard_pending(self, db) -> None:
        db.info.pop(PENDING_KEY, None)


# Module-level singleton shared across all request handlers.
cache = CacheManager()
