"""Durable draft storage keyed by form and record identity.

`DraftStore` is the capability the merge logic depends on; `RedisDraftStore`
is the shipped backend (JSON values under a namespaced key, optional TTL).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from opsdesk.config import settings
from opsdesk.errors import OpsDeskError

logger = logging.getLogger(__name__)

K = TypeVar("K")
K_contra = TypeVar("K_contra", contravariant=True)

Draft = dict[str, Any]


class DraftStoreError(OpsDeskError):
    """Raised when the draft backend cannot be read or written."""


@dataclass(frozen=True)
class DraftKey:
    """Identity of one form's draft for one record, e.g. DraftKey("price_options", quotation_id)."""

    form: str
    record_id: str

    def __str__(self) -> str:
        return f"{self.form}:{self.record_id}"


class DraftStore(Protocol[K_contra]):
    async def get(self, key: K_contra) -> Draft | None: ...

    async def set(self, key: K_contra, value: Draft) -> None: ...

    async def delete(self, key: K_contra) -> None: ...


class RedisDraftStore(Generic[K]):
    """Drafts as JSON strings in Redis.

    Args:
        redis: An async Redis client created with decode_responses=True.
        key_fn: Maps a draft key to its string form (defaults to str()).
        prefix: Namespace for every Redis key.
        ttl: Expiry in seconds, refreshed on every write; 0 keeps drafts forever.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        key_fn: Callable[[K], str] = str,
        prefix: str | None = None,
        ttl: int | None = None,
    ) -> None:
        self._redis = redis
        self._key_fn = key_fn
        self._prefix = prefix if prefix is not None else settings.drafts.draft_key_prefix
        self._ttl = ttl if ttl is not None else settings.drafts.draft_ttl_seconds

    def redis_key(self, key: K) -> str:
        return f"{self._prefix}:{self._key_fn(key)}"

    async def get(self, key: K) -> Draft | None:
        try:
            raw = await self._redis.get(self.redis_key(key))
        except RedisError as exc:
            raise DraftStoreError(f"Failed to read draft {key}: {exc}") from exc
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable draft %s", self.redis_key(key))
            return None
        return value if isinstance(value, dict) else None

    async def set(self, key: K, value: Draft) -> None:
        payload = json.dumps(value, default=str)
        try:
            if self._ttl > 0:
                await self._redis.setex(self.redis_key(key), self._ttl, payload)
            else:
                await self._redis.set(self.redis_key(key), payload)
        except RedisError as exc:
            raise DraftStoreError(f"Failed to save draft {key}: {exc}") from exc

    async def delete(self, key: K) -> None:
        try:
            await self._redis.delete(self.redis_key(key))
        except RedisError as exc:
            raise DraftStoreError(f"Failed to delete draft {key}: {exc}") from exc


def create_draft_store() -> RedisDraftStore[DraftKey]:
    """Draft store on the application's shared Redis client."""
    from opsdesk.db.engine import redis_client

    return RedisDraftStore(redis_client)
