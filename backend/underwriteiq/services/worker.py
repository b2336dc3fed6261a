"""One scheduler tick: drain up to MAX_JOBS_PER_TICK jobs within the worker budget."""

import time

from underwriteiq.core.constants import (
    ESTIMATED_SECONDS_PER_JOB,
    MAX_JOBS_PER_TICK,
    PROCESSING_TIMEOUT,
    WORKER_TIMEOUT,
)
from underwriteiq.core.logger import logger
from underwriteiq.services.job_queue import JobQueue
from underwriteiq.services.job_store import JobStore
from underwriteiq.services.processor import Processor


async def run_worker_tick(
    queue: JobQueue,
    jobs: JobStore,
    processor: Processor,
    max_jobs: int = MAX_JOBS_PER_TICK,
    budget: float = WORKER_TIMEOUT,
    min_job_budget: float = ESTIMATED_SECONDS_PER_JOB,
    clock=time.monotonic,
) -> dict:
    started = clock()
    processed: list[dict] = []

    if await queue.length() == 0:
        return {"ok": True, "processed": 0, "jobs": [], "elapsed": 0, "remainingQueue": 0}

    while len(processed) < max_jobs:
        # Jobs run under the full processing deadline; only start one while the tick has room for it.
        remaining_budget = budget - (clock() - started)
        if remaining_budget < min_job_budget:
            logger.info(f"Worker: {max(remaining_budget, 0):.0f}s of tick budget left, leaving the rest for the next tick")
            break

        job_id = await queue.dequeue()
        if job_id is None:
            break

        job_started = clock()
        try:
            job = await jobs.get(job_id)
            if job is None:
                logger.warning(f"Worker: {job_id} dequeued but has no record, dropping")
                continue
            if not job.blob_urls:
                logger.warning(f"Worker: {job_id} has no uploaded files, dropping")
                continue

            status = await processor.process(job_id, job.blob_urls[0], timeout=PROCESSING_TIMEOUT)
            processed.append({
                "jobId": job_id,
                "status": status.value if status else "missing",
                "time": round((clock() - job_started) * 1000),
            })
        finally:
            await queue.mark_processing_done(job_id)

    elapsed_ms = round((clock() - started) * 1000)
    remaining = await queue.length()
    logger.info(f"Worker: processed {len(processed)} job(s) in {elapsed_ms}ms, {remaining} left in queue")
    return {
        "ok": True,
        "processed": len(processed),
        "jobs": processed,
        "elapsed": elapsed_ms,
        "remainingQueue": remaining,
    }
