"""Queue admission (/start-processing) and the cron-driven worker tick (/process-worker)."""

import hmac

from fastapi import APIRouter, Request
from redis.exceptions import RedisError

from underwriteiq.core.errors import ApiError, ErrorCode
from underwriteiq.core.langfuse_client import flush
from underwriteiq.core.logger import logger
from underwriteiq.deps import get_services
from underwriteiq.middleware import request_id_var
from underwriteiq.models import JobStatus, StartProcessingRequest
from underwriteiq.routes.common import estimated_wait, is_valid_job_id, read_json
from underwriteiq.services.worker import run_worker_tick

router = APIRouter(tags=["Processing"])


@router.post("/start-processing")
async def start_processing(request: Request):
    body = await read_json(request, StartProcessingRequest)
    if not is_valid_job_id(body.job_id):
        raise ApiError(ErrorCode.INVALID_JOB_ID)

    services = get_services()
    job = await services.jobs.get(body.job_id)
    if job is None:
        raise ApiError(ErrorCode.JOB_NOT_FOUND)

    if job.status == JobStatus.COMPLETE:
        return {"ok": True, "status": "complete"}
    if job.status == JobStatus.ERROR:
        return {
            "ok": False,
            "status": "error",
            "error": job.error.model_dump(mode="json"),
            "code": job.error.code.value,
            "request_id": request_id_var.get(),
        }
    if not job.blob_urls:
        raise ApiError(ErrorCode.NO_FILES)
    if job.status == JobStatus.QUEUED:
        position = await services.queue.position(job.job_id)
        return {
            "ok": True,
            "status": "queued",
            "position": position,
            "queueLength": await services.queue.length(),
            "estimatedWait": estimated_wait(position),
        }
    if job.status == JobStatus.PROCESSING:
        return {"ok": True, "status": "processing"}

    try:
        position = await services.queue.enqueue(job.job_id)
        queue_length = await services.queue.length()
    except (RedisError, OSError) as e:
        logger.error(f"Start processing: enqueue of {job.job_id} failed: {e}")
        raise ApiError(ErrorCode.PROCESSING_INIT_FAILED, http_status=500) from e

    return {
        "ok": True,
        "status": "queued",
        "position": position,
        "queueLength": queue_length,
        "estimatedWait": estimated_wait(position),
    }


def _is_authorized(request: Request, cron_secret: str) -> bool:
    if request.headers.get("x-vercel-cron") == "1":
        return True
    auth = request.headers.get("authorization", "")
    if not cron_secret or not auth.startswith("Bearer "):
        return False
    return hmac.compare_digest(auth[len("Bearer "):].encode(), cron_secret.encode())


@router.api_route("/process-worker", methods=["GET", "POST"])
async def process_worker(request: Request):
    services = get_services()
    if not _is_authorized(request, services.settings.cron_secret):
        logger.warning("Worker: unauthorized call rejected")
        raise ApiError(ErrorCode.UNAUTHORIZED, http_status=401)

    try:
        return await run_worker_tick(services.queue, services.jobs, services.processor)
    finally:
        flush()
