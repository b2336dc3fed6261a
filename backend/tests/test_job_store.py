"""Tests for the job repository, upload lock and queue over the in-memory KV."""

import os
import re
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from underwriteiq.core.constants import STATUS_TTLS
from underwriteiq.core.errors import ErrorCode
from underwriteiq.models import JobError, JobStatus
from underwriteiq.services.job_queue import JobQueue
from underwriteiq.services.job_store import JobStore, generate_job_id, to_base36
from underwriteiq.services.locks import UploadLock


# ===========================================================================
# Helpers
# ===========================================================================


class TestJobIds:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_generated_ids_match_public_format(self):
        job_id = generate_job_id()
        assert re.match(r"^job_[a-z0-9]+$", job_id)

    def test_generated_ids_are_unique(self):
        assert len({generate_job_id() for _ in range(200)}) == 200


# ===========================================================================
# JobStore
# ===========================================================================


@pytest.mark.asyncio
class TestJobStore:
    async def test_create_writes_pending_job_and_email_index(self, job_store, kv, keys, metadata):
        job = await job_store.create("job_abc", metadata)
        assert job.status == JobStatus.PENDING
        assert job.file_count == 0
        assert job.blob_urls == []
        assert await kv.get(keys.email_job("john.doe@example.com")) == "job_abc"
        assert await kv.ttl(keys.job("job_abc")) == STATUS_TTLS["pending"]

    async def test_get_round_trips(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        job = await job_store.get("job_abc")
        assert job.metadata.email == "john.doe@example.com"
        assert job.metadata.name == "John Doe"

    async def test_get_missing_returns_none(self, job_store):
        assert await job_store.get("job_missing") is None

    async def test_corrupt_record_reads_as_none(self, job_store, kv, keys):
        await kv.set(keys.job("job_bad"), "{not json")
        assert await job_store.get("job_bad") is None

    async def test_pending_job_stays_pending_while_uploads_land(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        job = await job_store.update_progress("job_abc", "Upload complete", "https://blob.test/a.pdf")
        assert job.status == JobStatus.PENDING
        assert job.blob_urls == ["https://blob.test/a.pdf"]

    async def test_blob_url_appended_once(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.update_progress("job_abc", "x", "https://blob.test/a.pdf")
        job = await job_store.update_progress("job_abc", "x", "https://blob.test/a.pdf")
        assert job.blob_urls == ["https://blob.test/a.pdf"]

    async def test_queued_job_moves_to_processing(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.set_status("job_abc", JobStatus.QUEUED, "Queued")
        job = await job_store.update_progress("job_abc", "Downloading file...")
        assert job.status == JobStatus.PROCESSING
        assert job.progress == "Downloading file..."

    async def test_late_upload_keeps_queued_status(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.record_upload("job_abc", "https://blob.test/a.pdf", "Upload complete")
        await job_store.set_status("job_abc", JobStatus.QUEUED, "Queued")

        job = await job_store.record_upload("job_abc", "https://blob.test/b.pdf", "Upload complete")

        assert job.status == JobStatus.QUEUED
        assert job.progress == "Queued"
        assert job.blob_urls == ["https://blob.test/a.pdf", "https://blob.test/b.pdf"]

    async def test_record_upload_on_terminal_job_is_ignored(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.complete("job_abc", {"done": True})
        job = await job_store.record_upload("job_abc", "https://blob.test/a.pdf", "Upload complete")
        assert job.status == JobStatus.COMPLETE
        assert job.blob_urls == []

    async def test_increment_file_count(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        assert await job_store.increment_file_count("job_abc") == 1
        assert await job_store.increment_file_count("job_abc") == 2
        assert (await job_store.get("job_abc")).file_count == 2

    async def test_increment_missing_job_returns_zero(self, job_store):
        assert await job_store.increment_file_count("job_missing") == 0

    async def test_complete_sets_result_and_drops_email_index(self, job_store, kv, keys, metadata):
        await job_store.create("job_abc", metadata)
        job = await job_store.complete("job_abc", {"redirect": {"path": "funding"}})
        assert job.status == JobStatus.COMPLETE
        assert job.result == {"redirect": {"path": "funding"}}
        assert job.completed_at is not None
        assert await kv.get(keys.email_job("john.doe@example.com")) is None
        assert await kv.ttl(keys.job("job_abc")) == STATUS_TTLS["complete"]

    async def test_terminal_writes_are_idempotent(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.complete("job_abc", {"first": True})
        job = await job_store.fail("job_abc", JobError(message="late", code=ErrorCode.TIMEOUT))
        assert job.status == JobStatus.COMPLETE
        assert job.result == {"first": True}
        assert job.error is None

    async def test_terminal_job_ignores_progress(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.fail("job_abc", JobError(message="bad", code=ErrorCode.PARSE_FAILED))
        job = await job_store.update_progress("job_abc", "Running analysis...", "https://blob.test/b.pdf")
        assert job.status == JobStatus.ERROR
        assert job.blob_urls == []

    async def test_fail_keeps_newer_email_index(self, job_store, kv, keys, metadata):
        await job_store.create("job_old", metadata)
        await job_store.create("job_new", metadata)
        await job_store.fail("job_old", JobError(message="bad", code=ErrorCode.PARSE_FAILED))
        assert await kv.get(keys.email_job("john.doe@example.com")) == "job_new"

    async def test_find_active_by_email(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        found = await job_store.find_active_by_email("  JOHN.DOE@example.com ")
        assert found.job_id == "job_abc"

    async def test_find_active_ignores_terminal_jobs(self, job_store, metadata):
        await job_store.create("job_abc", metadata)
        await job_store.complete("job_abc", {})
        assert await job_store.find_active_by_email("john.doe@example.com") is None

    async def test_pending_job_expires(self, job_store, clock, metadata):
        await job_store.create("job_abc", metadata)
        clock.advance(STATUS_TTLS["pending"] + 1)
        assert await job_store.get("job_abc") is None

    async def test_kv_failure_reads_as_none(self, keys):
        kv = AsyncMock()
        kv.get = AsyncMock(side_effect=RedisConnectionError("down"))
        kv.set = AsyncMock(side_effect=RedisConnectionError("down"))
        store = JobStore(kv, keys)
        assert await store.get("job_abc") is None
        assert await store.increment_file_count("job_abc") == 0
        assert await store.find_active_by_email("a@b.com") is None


# ===========================================================================
# UploadLock
# ===========================================================================


@pytest.mark.asyncio
class TestUploadLock:
    async def test_second_acquire_refused(self, kv, keys):
        lock = UploadLock(kv, keys)
        assert await lock.acquire("a@b.com") is True
        assert await lock.acquire("A@B.com") is False

    async def test_release_frees_lock(self, kv, keys):
        lock = UploadLock(kv, keys)
        await lock.acquire("a@b.com")
        await lock.release("a@b.com")
        assert await lock.acquire("a@b.com") is True

    async def test_lock_expires(self, kv, keys, clock):
        lock = UploadLock(kv, keys, ttl=30)
        await lock.acquire("a@b.com")
        clock.advance(31)
        assert await lock.acquire("a@b.com") is True


# ===========================================================================
# JobQueue
# ===========================================================================


@pytest.mark.asyncio
class TestJobQueue:
    async def test_fifo_order_and_positions(self, kv, keys, job_store, metadata):
        queue = JobQueue(kv, keys, job_store)
        for job_id in ("job_a", "job_b", "job_c"):
            await job_store.create(job_id, metadata)
        assert await queue.enqueue("job_a") == 1
        assert await queue.enqueue("job_b") == 2
        assert await queue.enqueue("job_c") == 3

        assert await queue.position("job_a") == 1
        assert await queue.position("job_c") == 3
        assert await queue.position("job_zzz") == 0

        assert await queue.dequeue() == "job_a"
        assert await queue.position("job_b") == 1
        assert await queue.length() == 2

    async def test_enqueue_marks_job_queued(self, kv, keys, job_store, metadata):
        queue = JobQueue(kv, keys, job_store)
        await job_store.create("job_a", metadata)
        await queue.enqueue("job_a")
        job = await job_store.get("job_a")
        assert job.status == JobStatus.QUEUED
        assert await kv.ttl(keys.job("job_a")) == STATUS_TTLS["queued"]

    async def test_inflight_tracking(self, kv, keys, job_store, metadata):
        queue = JobQueue(kv, keys, job_store)
        await job_store.create("job_a", metadata)
        await queue.enqueue("job_a")
        job_id = await queue.dequeue()
        assert await queue.is_processing(job_id) is True
        await queue.mark_processing_done(job_id)
        assert await queue.is_processing(job_id) is False

    async def test_dequeue_empty_returns_none(self, kv, keys, job_store):
        queue = JobQueue(kv, keys, job_store)
        assert await queue.dequeue() is None


# ===========================================================================
# In-memory KV sets
# ===========================================================================


@pytest.mark.asyncio
class TestInMemoryKVSets:
    async def test_smembers_returns_a_copy(self, kv):
        await kv.sadd("s", "a", "b")
        members = await kv.smembers("s")
        assert members == {"a", "b"}
        members.add("c")
        assert await kv.smembers("s") == {"a", "b"}

    async def test_smembers_of_missing_key_is_empty(self, kv):
        assert await kv.smembers("nope") == set()

    async def test_removing_last_member_drops_key(self, kv):
        await kv.sadd("s", "a")
        assert await kv.srem("s", "a") == 1
        assert await kv.get("s") is None
