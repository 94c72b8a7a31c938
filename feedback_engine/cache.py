"""
Cache-aside layer for feedback responses.

Responses are stored as JSON under a content-addressed key with a TTL.
Backends only need ``get`` and ``set`` with expiry. Any backend failure is
logged and treated as a miss, so caching can never abort generation.
"""

import hashlib
import json
import time
from typing import Any, Awaitable, Callable, Protocol

import redis.asyncio as aioredis
from cachetools import TLRUCache
from loguru import logger
from pydantic import ValidationError

from feedback_engine.config import Settings
from feedback_engine.models import AIFeedbackResponse, FeedbackRequest

KEY_PREFIX = "ai_feedback_"
DEFAULT_TTL_SECONDS = 1800


class CacheFailure(Exception):
    """Raised internally when the cache backend misbehaves; never escapes this module."""

    def __init__(self, message: str, key: str, cause: Exception | None = None):
        self.key = key
        self.cause = cause
        super().__init__(message)


class CacheBackend(Protocol):
    """Minimal key-value-with-expiry contract."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...


def _entry_expiry(_key: str, value: tuple[str, int], now: float) -> float:
    return now + value[1]


class InMemoryCacheBackend:
    """Process-local backend built on ``cachetools.TLRUCache`` with per-entry TTL."""

    def __init__(self, maxsize: int = 1000, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)

    async def get(self, key: str) -> str | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        return entry[0]

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._cache[key] = (value, ttl_seconds)

    def __len__(self) -> int:
        return len(self._cache)


class RedisCacheBackend:
    """Redis backend using ``SET key value EX ttl``."""

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        *,
        url: str | None = None,
        prefix: str = "ai_feedback",
    ):
        if client is None:
            if not url:
                raise ValueError("Either a Redis client or a Redis URL is required")
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        self._client = client
        self._prefix = prefix

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    async def get(self, key: str) -> str | None:
        value = await self._client.get(self._full_key(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(self._full_key(key), value, ex=ttl_seconds)

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()


def content_digest(text: str) -> str:
    """SHA-256 hex digest of submission text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_cache_key(request: FeedbackRequest) -> str:
    """
    Derive the content-addressed cache key for a request.

    The key depends only on the assignment id, a digest of the submission
    text, the domain tag and the submission kind. Learner context and
    performance hints never affect it.
    """
    key_data = json.dumps(
        [
            request.assignment_id,
            content_digest(request.submission_text),
            request.domain,
            request.submission_kind.value,
        ],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return KEY_PREFIX + hashlib.sha256(key_data.encode("utf-8")).hexdigest()[:32]


class FeedbackCache:
    """
    Cache-aside wrapper around a ``CacheBackend``.

    Entries are never updated in place; a regeneration overwrites the whole
    serialized response.
    """

    def __init__(
        self,
        backend: CacheBackend,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._backend = backend
        self._default_ttl = default_ttl
        self._clock = clock

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    async def aclose(self) -> None:
        """Release backend connections, if the backend holds any."""
        close = getattr(self._backend, "close", None)
        if close is not None:
            await close()

    async def lookup(self, key: str) -> AIFeedbackResponse | None:
        """Read a cached response; any failure counts as a miss."""
        try:
            payload = await self._read(key)
        except CacheFailure as e:
            logger.warning(f"Cache failure on read ({e.key[:24]}...): {e}")
            return None

        if payload is None:
            logger.debug(f"Cache miss for key: {key[:24]}...")
        else:
            logger.debug(f"Cache hit for key: {key[:24]}...")
        return payload

    async def store(self, key: str, response: AIFeedbackResponse, ttl: int | None = None) -> bool:
        """Write a response; returns False if the backend failed."""
        try:
            await self._write(key, response, self._default_ttl if ttl is None else ttl)
            return True
        except CacheFailure as e:
            logger.warning(f"Cache failure on write ({e.key[:24]}...): {e}")
            return False

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[AIFeedbackResponse]],
        ttl: int | None = None,
        *,
        read: bool = True,
    ) -> tuple[AIFeedbackResponse, bool]:
        """
        Return a cached response or compute, store and return a fresh one.

        Args:
            key: Cache key.
            compute_fn: Coroutine factory producing a fresh response on a miss.
            ttl: Entry lifetime in seconds (default TTL if None).
            read: When False the lookup is skipped, but the result is still stored.

        Returns:
            Tuple of (response tagged with cache metadata, was_hit).
        """
        start = self._clock()

        if read:
            cached = await self.lookup(key)
            if cached is not None:
                latency_ms = (self._clock() - start) * 1000
                return cached.with_cache_info(hit=True, latency_ms=latency_ms), True

        response = await compute_fn()
        await self.store(key, response, ttl)
        latency_ms = (self._clock() - start) * 1000
        return response.with_cache_info(hit=False, latency_ms=latency_ms), False

    async def _read(self, key: str) -> AIFeedbackResponse | None:
        try:
            raw: Any = await self._backend.get(key)
        except Exception as e:  # pylint: disable=broad-except
            raise CacheFailure(f"Backend read failed: {e}", key, e) from e

        if raw is None:
            return None

        try:
            return AIFeedbackResponse.model_validate_json(raw)
        except (ValidationError, ValueError, TypeError) as e:
            raise CacheFailure(f"Corrupt cache entry: {e}", key, e) from e

    async def _write(self, key: str, response: AIFeedbackResponse, ttl: int) -> None:
        try:
            await self._backend.set(key, response.model_dump_json(), ttl)
        except Exception as e:  # pylint: disable=broad-except
            raise CacheFailure(f"Backend write failed: {e}", key, e) from e


def create_cache_backend(settings: Settings) -> CacheBackend:
    """Redis when a URL is configured, otherwise an in-memory TTL cache."""
    if settings.redis_url:
        logger.info(f"Using Redis cache at: {settings.redis_url}")
        return RedisCacheBackend(url=settings.redis_url)
    logger.info(f"Using in-memory cache with TTL: {settings.cache_ttl_seconds}s")
    return InMemoryCacheBackend(maxsize=settings.cache_maxsize)
