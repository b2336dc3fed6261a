"""FIFO job queue plus the in-flight set owned by workers.

LPUSH on enqueue and RPOP on dequeue, so the head of the queue is the right
end of the list.
"""

from underwriteiq.core.constants import PROGRESS_QUEUED
from underwriteiq.core.kv import KeySpace
from underwriteiq.core.logger import logger
from underwriteiq.models import JobStatus
from underwriteiq.services.job_store import JobStore


class JobQueue:
    def __init__(self, kv, keys: KeySpace, jobs: JobStore) -> None:
        self.kv = kv
        self.keys = keys
        self.jobs = jobs

    async def enqueue(self, job_id: str) -> int:
        """Append and mark the job queued. Returns its 1-based position."""
        await self.kv.lpush(self.keys.queue, job_id)
        await self.jobs.set_status(job_id, JobStatus.QUEUED, PROGRESS_QUEUED)
        position = await self.length()
        logger.info(f"Job {job_id}: queued at position {position}")
        return position

    async def dequeue(self) -> str | None:
        job_id = await self.kv.rpop(self.keys.queue)
        if job_id is None:
            return None
        await self.kv.sadd(self.keys.inflight, job_id)
        return job_id

    async def mark_processing_done(self, job_id: str) -> None:
        await self.kv.srem(self.keys.inflight, job_id)

    async def is_processing(self, job_id: str) -> bool:
        return bool(await self.kv.sismember(self.keys.inflight, job_id))

    async def length(self) -> int:
        return int(await self.kv.llen(self.keys.queue))

    async def position(self, job_id: str) -> int:
        """1-based distance from the head (next to be dequeued). 0 when not queued."""
        entries = await self.kv.lrange(self.keys.queue, 0, -1)
        for index, entry in enumerate(reversed(entries)):
            if entry == job_id:
                return index + 1
        return 0
