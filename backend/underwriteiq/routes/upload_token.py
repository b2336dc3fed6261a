"""Admission endpoint: dedupe short-circuit, resume, or create a job."""

from fastapi import APIRouter, Request

from underwriteiq.core.errors import ApiError, ErrorCode
from underwriteiq.core.logger import logger
from underwriteiq.deps import get_services
from underwriteiq.models import UploadTokenRequest
from underwriteiq.rate_limit import limiter, upload_token_limit
from underwriteiq.routes.common import read_json
from underwriteiq.services.job_store import generate_job_id

router = APIRouter(tags=["Upload"])


@router.post("/upload-token")
@limiter.limit(upload_token_limit)
async def upload_token(request: Request):
    """Returns {ok, jobId, resumed} or, on a dedupe hit, {ok, deduped, source, redirect}."""
    body = await read_json(request, UploadTokenRequest)
    if not body.email:
        raise ApiError(ErrorCode.EMAIL_REQUIRED)

    services = get_services()
    metadata = body.to_metadata()

    if not metadata.force_reprocess:
        keys = services.dedupe.keys_for(
            email=metadata.email,
            phone=metadata.phone,
            device_id=metadata.device_id,
            ref_id=metadata.ref_id,
        )
        hit = await services.dedupe.check(keys)
        if hit is not None:
            logger.info(f"Upload token: dedupe hit on {hit.source} for {metadata.email}")
            return {"ok": True, "deduped": True, "source": hit.source, "redirect": hit.redirect.to_wire()}

    active = await services.jobs.find_active_by_email(metadata.email)
    if active is not None:
        logger.info(f"Upload token: resuming {active.job_id} ({active.status.value})")
        return {"ok": True, "jobId": active.job_id, "resumed": True, "status": active.status.value}

    if not await services.lock.acquire(metadata.email):
        raise ApiError(ErrorCode.CONCURRENT_UPLOAD)

    try:
        # Another request may have created the job between the lookup and the lock.
        active = await services.jobs.find_active_by_email(metadata.email)
        if active is not None:
            return {"ok": True, "jobId": active.job_id, "resumed": True, "status": active.status.value}

        job_id = generate_job_id()
        job = await services.jobs.create(job_id, metadata)
        if job is None:
            raise ApiError(ErrorCode.JOB_CREATE_FAILED, http_status=500)
    finally:
        await services.lock.release(metadata.email)

    logger.info(f"Upload token: created {job_id}")
    return {"ok": True, "jobId": job_id, "resumed": False}
