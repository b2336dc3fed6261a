"""KV store access: Redis in production, an in-memory stand-in for local runs and tests.

Both backends expose the subset of the ``redis.asyncio`` client surface the
service uses (strings with TTL + NX, lists, sets) with ``decode_responses=True``
semantics, so services are written once against that surface.
"""

import time
from collections import deque
from collections.abc import Callable

import redis.asyncio as redis
from redis.exceptions import ResponseError

from underwriteiq.config import Settings
from underwriteiq.core.constants import DEFAULT_HTTP_TIMEOUT
from underwriteiq.core.logger import logger


class KeySpace:
    """Builds namespaced keys. Every key the service touches goes through here."""

    def __init__(self, prefix: str = "uwiq:") -> None:
        self.prefix = prefix

    def job(self, job_id: str) -> str:
        return f"{self.prefix}job:{job_id}"

    def email_job(self, email: str) -> str:
        return f"{self.prefix}ejob:{email}"

    def upload_lock(self, email: str) -> str:
        return f"{self.prefix}lock:{email}"

    @property
    def queue(self) -> str:
        return f"{self.prefix}queue"

    @property
    def inflight(self) -> str:
        return f"{self.prefix}queue:inflight"

    def user(self, digest: str) -> str:
        return f"{self.prefix}u:{digest}"

    def device(self, device_id: str) -> str:
        return f"{self.prefix}d:{device_id}"

    def ref(self, ref_id: str) -> str:
        return f"{self.prefix}r:{ref_id}"

    def parse_cache(self, digest: str) -> str:
        return f"{self.prefix}parse:{digest}"


class InMemoryKV:
    """Single-process KV with Redis semantics for the commands the service uses.

    ``clock`` returns seconds; tests pass a fake clock to step TTLs forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, object] = {}
        self._expires: dict[str, float] = {}

    def _purge(self, name: str) -> None:
        deadline = self._expires.get(name)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(name, None)
            self._expires.pop(name, None)

    def _get_typed(self, name: str, kind: type, factory: Callable[[], object] | None = None):
        self._purge(name)
        value = self._data.get(name)
        if value is None:
            if factory is None:
                return None
            value = factory()
            self._data[name] = value
        if not isinstance(value, kind):
            raise ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return value

    # strings

    async def get(self, name: str) -> str | None:
        return self._get_typed(name, str)

    async def set(self, name: str, value, ex: int | None = None, nx: bool = False) -> bool | None:
        self._purge(name)
        if nx and name in self._data:
            return None
        self._data[name] = str(value)
        if ex is not None:
            self._expires[name] = self._clock() + ex
        else:
            self._expires.pop(name, None)
        return True

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            self._purge(name)
            if self._data.pop(name, None) is not None:
                removed += 1
            self._expires.pop(name, None)
        return removed

    async def exists(self, *names: str) -> int:
        count = 0
        for name in names:
            self._purge(name)
            if name in self._data:
                count += 1
        return count

    async def ttl(self, name: str) -> int:
        self._purge(name)
        if name not in self._data:
            return -2
        deadline = self._expires.get(name)
        if deadline is None:
            return -1
        return max(0, round(deadline - self._clock()))

    # lists

    async def lpush(self, name: str, *values) -> int:
        items = self._get_typed(name, deque, deque)
        for value in values:
            items.appendleft(str(value))
        return len(items)

    async def rpop(self, name: str) -> str | None:
        items = self._get_typed(name, deque)
        if not items:
            return None
        value = items.pop()
        if not items:
            await self.delete(name)
        return value

    async def llen(self, name: str) -> int:
        items = self._get_typed(name, deque)
        return len(items) if items else 0

    async def lrange(self, name: str, start: int, end: int) -> list[str]:
        items = self._get_typed(name, deque)
        if not items:
            return []
        values = list(items)
        stop = None if end == -1 else end + 1
        return values[start:stop]

    # sets

    async def sadd(self, name: str, *values) -> int:
        members = self._get_typed(name, set, set)
        before = len(members)
        members.update(str(v) for v in values)
        return len(members) - before

    async def srem(self, name: str, *values) -> int:
        members = self._get_typed(name, set)
        if not members:
            return 0
        removed = 0
        for value in values:
            if str(value) in members:
                members.discard(str(value))
                removed += 1
        if not members:
            await self.delete(name)
        return removed

    async def sismember(self, name: str, value) -> bool:
        members = self._get_typed(name, set)
        return bool(members) and str(value) in members

    async def smembers(self, name: str) -> "set[str]":
        members = self._get_typed(name, set)
        return set(members) if members else set()

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._data.clear()
        self._expires.clear()


def create_kv(settings: Settings):
    """Return the KV client selected by KV_BACKEND."""
    backend = settings.kv_backend.lower()
    if backend == "memory":
        logger.warning("KV: using in-memory backend (state is per-process and lost on restart)")
        return InMemoryKV()
    if backend != "redis":
        raise ValueError(f"Unsupported KV_BACKEND '{settings.kv_backend}' (expected redis or memory)")

    logger.info("KV: connecting to Redis")
    return redis.Redis.from_url(
        settings.kv_url,
        password=settings.kv_token or None,
        decode_responses=True,
        socket_timeout=DEFAULT_HTTP_TIMEOUT,
        socket_connect_timeout=DEFAULT_HTTP_TIMEOUT,
    )
