"""Job repository: typed CRUD over the KV with status-dependent TTLs.

Nothing here raises on KV failure. Every method logs and returns None (or 0)
so HTTP handlers and the processor can degrade instead of crashing.
"""

import json
import secrets
import time
from datetime import datetime, timezone

from pydantic import ValidationError
from redis.exceptions import RedisError

from underwriteiq.core.constants import MAX_FILES_PER_JOB, PROGRESS_COMPLETE, PROGRESS_CREATED, PROGRESS_FAILED, STATUS_TTLS
from underwriteiq.core.kv import KeySpace
from underwriteiq.core.logger import logger
from underwriteiq.models import Job, JobError, JobMetadata, JobStatus

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id() -> str:
    """job_<base36 ms timestamp><8 hex chars>"""
    return f"job_{to_base36(int(time.time() * 1000))}{secrets.token_hex(4)}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class JobStore:
    def __init__(self, kv, keys: KeySpace) -> None:
        self.kv = kv
        self.keys = keys

    async def _write(self, job: Job) -> bool:
        ttl = STATUS_TTLS[job.status.value]
        try:
            await self.kv.set(self.keys.job(job.job_id), json.dumps(job.to_wire()), ex=ttl)
        except (RedisError, OSError) as e:
            logger.error(f"JobStore: write failed for {job.job_id}: {e}")
            return False
        return True

    async def create(self, job_id: str, metadata: JobMetadata) -> Job | None:
        now = utc_now_iso()
        job = Job(
            job_id=job_id,
            status=JobStatus.PENDING,
            progress=PROGRESS_CREATED,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        if not await self._write(job):
            return None
        email = normalize_email(metadata.email)
        try:
            await self.kv.set(self.keys.email_job(email), job_id, ex=STATUS_TTLS["pending"])
        except (RedisError, OSError) as e:
            logger.warning(f"JobStore: email index write failed for {job_id}: {e}")
        logger.info(f"Job created: {job_id}")
        return job

    async def get(self, job_id: str) -> Job | None:
        try:
            raw = await self.kv.get(self.keys.job(job_id))
        except (RedisError, OSError) as e:
            logger.error(f"JobStore: read failed for {job_id}: {e}")
            return None
        if raw is None:
            return None
        try:
            return Job.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"JobStore: corrupt record for {job_id}: {e}")
            return None

    async def update_progress(self, job_id: str, progress: str, blob_url: str | None = None) -> Job | None:
        """Record a phase boundary (and optionally a landed upload).

        Queued/processing jobs move to processing. Pending jobs that are still
        receiving uploads stay pending until they are queued.
        """
        job = await self.get(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            return job

        if job.status in (JobStatus.QUEUED, JobStatus.PROCESSING):
            job.status = JobStatus.PROCESSING
        job.progress = progress
        if blob_url and blob_url not in job.blob_urls:
            job.blob_urls.append(blob_url)
        job.updated_at = utc_now_iso()

        if not await self._write(job):
            return None
        await self._touch_email_index(job)
        return job

    async def record_upload(self, job_id: str, blob_url: str, progress: str) -> Job | None:
        """Append a landed upload without touching the status.

        A late callback can arrive after the job was queued; only pending jobs
        take the new progress text.
        """
        job = await self.get(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            return job

        if blob_url not in job.blob_urls:
            job.blob_urls.append(blob_url)
        if job.status == JobStatus.PENDING:
            job.progress = progress
        job.updated_at = utc_now_iso()

        if not await self._write(job):
            return None
        await self._touch_email_index(job)
        return job

    async def set_status(self, job_id: str, status: JobStatus, progress: str) -> Job | None:
        """Non-terminal status change. No-op on terminal jobs."""
        job = await self.get(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            return job
        job.status = status
        job.progress = progress
        job.updated_at = utc_now_iso()
        if not await self._write(job):
            return None
        await self._touch_email_index(job)
        return job

    async def increment_file_count(self, job_id: str) -> int:
        job = await self.get(job_id)
        if job is None:
            return 0
        job.file_count += 1
        job.updated_at = utc_now_iso()
        if not await self._write(job):
            return 0
        if job.file_count > MAX_FILES_PER_JOB:
            logger.warning(f"Job {job_id}: fileCount over-admitted to {job.file_count}")
        return job.file_count

    async def complete(self, job_id: str, result: dict) -> Job | None:
        job = await self.get(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            logger.info(f"Job {job_id}: already {job.status.value}, ignoring complete")
            return job
        now = utc_now_iso()
        job.status = JobStatus.COMPLETE
        job.progress = PROGRESS_COMPLETE
        job.result = result
        job.updated_at = now
        job.completed_at = now
        if not await self._write(job):
            return None
        await self._drop_email_index(job)
        logger.info(f"Job {job_id}: complete")
        return job

    async def fail(self, job_id: str, error: JobError) -> Job | None:
        job = await self.get(job_id)
        if job is None:
            return None
        if job.status.is_terminal:
            logger.info(f"Job {job_id}: already {job.status.value}, ignoring fail({error.code.value})")
            return job
        now = utc_now_iso()
        job.status = JobStatus.ERROR
        job.progress = PROGRESS_FAILED
        job.error = error
        job.updated_at = now
        job.completed_at = now
        if not await self._write(job):
            return None
        await self._drop_email_index(job)
        logger.info(f"Job {job_id}: failed with {error.code.value}")
        return job

    async def find_active_by_email(self, email: str) -> Job | None:
        try:
            job_id = await self.kv.get(self.keys.email_job(normalize_email(email)))
        except (RedisError, OSError) as e:
            logger.error(f"JobStore: email index read failed: {e}")
            return None
        if not job_id:
            return None
        job = await self.get(job_id)
        if job is None or job.status.is_terminal:
            return None
        return job

    async def _touch_email_index(self, job: Job) -> None:
        try:
            await self.kv.set(
                self.keys.email_job(normalize_email(job.metadata.email)),
                job.job_id,
                ex=STATUS_TTLS[job.status.value],
            )
        except (RedisError, OSError) as e:
            logger.warning(f"JobStore: email index refresh failed for {job.job_id}: {e}")

    async def _drop_email_index(self, job: Job) -> None:
        key = self.keys.email_job(normalize_email(job.metadata.email))
        try:
            # Only drop the index if it still points at this job.
            if await self.kv.get(key) == job.job_id:
                await self.kv.delete(key)
        except (RedisError, OSError) as e:
            logger.warning(f"JobStore: email index delete failed for {job.job_id}: {e}")
