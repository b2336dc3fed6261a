"""Blob store client-upload handshake: authorize each upload, then record its completion."""

import json

from fastapi import APIRouter, Request
from redis.exceptions import RedisError

from underwriteiq.core.constants import (
    ALLOWED_CONTENT_TYPES,
    MAX_FILE_SIZE,
    MAX_FILES_PER_JOB,
    PROGRESS_UPLOADED,
)
from underwriteiq.core.errors import ApiError, ErrorCode, UpstreamError
from underwriteiq.core.logger import logger
from underwriteiq.deps import Services, get_services
from underwriteiq.models import BlobCallback, JobStatus
from underwriteiq.routes.common import parse_json, validate_body

router = APIRouter(tags=["Upload"])

GENERATE_CLIENT_TOKEN = "blob.generate-client-token"
UPLOAD_COMPLETED = "blob.upload-completed"


def _job_id_from(raw: str | dict | None) -> str | None:
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw or "")
        except (json.JSONDecodeError, TypeError):
            return None
    if not isinstance(data, dict):
        return None
    job_id = data.get("jobId")
    return job_id if isinstance(job_id, str) and job_id else None


def _callback_url(request: Request, services: Services) -> str:
    base = services.settings.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/blob-upload"


async def _authorize(request: Request, services: Services, payload: dict) -> dict:
    job_id = _job_id_from(payload.get("clientPayload"))
    if job_id is None:
        raise ApiError(ErrorCode.VALIDATION_ERROR, "clientPayload must carry a jobId.")

    job = await services.jobs.get(job_id)
    if job is None:
        raise ApiError(ErrorCode.JOB_NOT_FOUND)
    if job.file_count >= MAX_FILES_PER_JOB:
        raise ApiError(ErrorCode.MAX_FILES_EXCEEDED)

    file_index = await services.jobs.increment_file_count(job_id)
    if file_index == 0:
        raise ApiError(ErrorCode.UPLOAD_FAILED, http_status=500)
    if file_index > MAX_FILES_PER_JOB:
        raise ApiError(ErrorCode.MAX_FILES_EXCEEDED)

    pathname = payload.get("pathname") or f"reports/{job_id}/report-{file_index}.pdf"
    client_token = services.blob.generate_client_token(
        pathname,
        allowed_content_types=ALLOWED_CONTENT_TYPES,
        maximum_size_in_bytes=MAX_FILE_SIZE,
        token_payload={"jobId": job_id, "fileIndex": file_index},
        callback_url=_callback_url(request, services),
        add_random_suffix=True,
    )
    logger.info(f"Blob upload: authorized file {file_index} for {job_id}")
    return {"type": GENERATE_CLIENT_TOKEN, "clientToken": client_token}


async def _complete(services: Services, payload: dict) -> dict:
    ack = {"type": UPLOAD_COMPLETED, "response": "ok"}
    blob = payload.get("blob") or {}
    job_id = _job_id_from(payload.get("tokenPayload"))
    blob_url = blob.get("url")
    if job_id is None or not blob_url:
        logger.warning("Blob upload: completion callback without jobId or blob url, ignoring")
        return ack

    job = await services.jobs.record_upload(job_id, blob_url, PROGRESS_UPLOADED)
    if job is None:
        logger.warning(f"Blob upload: completion for unknown job {job_id}")
        return ack

    logger.info(f"Blob upload: {job_id} has {len(job.blob_urls)}/{job.file_count} file(s)")
    if job.status == JobStatus.PENDING and len(job.blob_urls) >= job.file_count:
        await services.queue.enqueue(job_id)
    return ack


@router.post("/blob-upload")
async def blob_upload(request: Request):
    raw = await request.body()
    event = validate_body(parse_json(raw), BlobCallback)
    services = get_services()

    if event.type == UPLOAD_COMPLETED:
        if not services.blob.verify_callback_signature(raw, request.headers.get("x-vercel-signature")):
            logger.warning("Blob upload: completion callback signature mismatch")
            raise ApiError(ErrorCode.UNAUTHORIZED, "Invalid callback signature.", http_status=403)

    try:
        if event.type == GENERATE_CLIENT_TOKEN:
            return await _authorize(request, services, event.payload)
        if event.type == UPLOAD_COMPLETED:
            return await _complete(services, event.payload)
    except (RedisError, OSError, UpstreamError) as e:
        logger.error(f"Blob upload: {event.type} failed: {e}", exc_info=True)
        raise ApiError(ErrorCode.UPLOAD_FAILED, http_status=500) from e

    raise ApiError(ErrorCode.VALIDATION_ERROR, f"Unknown event type '{event.type}'.")
