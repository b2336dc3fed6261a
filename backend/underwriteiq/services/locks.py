"""Per-email upload lock guarding the resume-or-create window of /upload-token."""

from redis.exceptions import RedisError

from underwriteiq.core.constants import UPLOAD_LOCK_TTL
from underwriteiq.core.kv import KeySpace
from underwriteiq.core.logger import logger
from underwriteiq.services.job_store import normalize_email


class UploadLock:
    def __init__(self, kv, keys: KeySpace, ttl: int = UPLOAD_LOCK_TTL) -> None:
        self.kv = kv
        self.keys = keys
        self.ttl = ttl

    async def acquire(self, email: str) -> bool:
        """SET NX EX. False when another request holds the lock or the KV is down."""
        try:
            acquired = await self.kv.set(self.keys.upload_lock(normalize_email(email)), "1", ex=self.ttl, nx=True)
        except (RedisError, OSError) as e:
            logger.error(f"UploadLock: acquire failed: {e}")
            return False
        return bool(acquired)

    async def release(self, email: str) -> None:
        try:
            await self.kv.delete(self.keys.upload_lock(normalize_email(email)))
        except (RedisError, OSError) as e:
            # The TTL frees it anyway.
            logger.warning(f"UploadLock: release failed: {e}")
