"""Read-only polling endpoints: job status and referral lookup."""

from fastapi import APIRouter

from underwriteiq.core.errors import ApiError, ErrorCode
from underwriteiq.deps import get_services
from underwriteiq.models import JobStatus
from underwriteiq.routes.common import estimated_wait, is_valid_job_id

router = APIRouter(tags=["Status"])


@router.get("/job-status")
async def job_status(jobId: str | None = None):  # noqa: N803
    if not is_valid_job_id(jobId):
        raise ApiError(ErrorCode.INVALID_JOB_ID, http_status=400)

    services = get_services()
    job = await services.jobs.get(jobId)
    if job is None:
        raise ApiError(ErrorCode.JOB_NOT_FOUND, http_status=404, extra={"status": "not_found"})

    response = {
        "ok": True,
        "jobId": job.job_id,
        "status": job.status.value,
        "progress": job.progress,
        "createdAt": job.created_at,
        "updatedAt": job.updated_at,
    }

    if job.status == JobStatus.COMPLETE:
        response["result"] = job.result
        response["completedAt"] = job.completed_at
    elif job.status == JobStatus.ERROR:
        response["error"] = job.error.model_dump(mode="json") if job.error else None
        response["completedAt"] = job.completed_at
    elif job.status == JobStatus.QUEUED:
        position = await services.queue.position(job.job_id)
        response["position"] = position
        response["queueLength"] = await services.queue.length()
        response["progress"] = f"Waiting in queue (position {position})"
        response["estimatedWait"] = estimated_wait(position)
    else:
        response["fileCount"] = job.file_count
        response["uploadedFiles"] = len(job.blob_urls)

    return response


@router.get("/referral-lookup")
async def referral_lookup(ref: str | None = None):
    if not ref:
        return {"ok": False, "redirect": None, "error": "Missing ref parameter."}
    redirect = await get_services().dedupe.lookup_by_ref(ref)
    if redirect is None:
        return {"ok": False, "redirect": None, "error": "Referral not found or expired."}
    return {"ok": True, "redirect": redirect.to_wire()}
