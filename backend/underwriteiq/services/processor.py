"""Job processor: the state machine that turns one uploaded PDF into a verdict.

Phases: load -> dedupe short-circuit -> download -> parse -> merge bureaus ->
identity gate -> underwrite -> suggestions + redirect -> CRM + letters ->
complete. Any classified failure ends in ``fail``; blob cleanup always runs.
"""

import asyncio
import time
from pathlib import PurePosixPath
from urllib.parse import urlparse

from underwriteiq.config import Settings
from underwriteiq.core.blob import BlobClient
from underwriteiq.core.constants import (
    MIN_PDF_BYTES,
    PROCESSING_TIMEOUT,
    PROGRESS_DOWNLOADING,
    PROGRESS_PARSING,
    PROGRESS_SIDE_EFFECTS,
    PROGRESS_UNDERWRITING,
    PROGRESS_VALIDATING,
)
from underwriteiq.core.errors import ErrorCode, ProcessingError, UpstreamError, default_message
from underwriteiq.core.logger import job_id_var, logger
from underwriteiq.models import Job, JobError, JobStatus
from underwriteiq.services.crm import CRMClient
from underwriteiq.services.dedupe import DedupeIndex
from underwriteiq.services.identity import validate_identity
from underwriteiq.services.job_store import JobStore
from underwriteiq.services.letters import LetterDelivery
from underwriteiq.services.parser import ParseGateway, merge_bureaus
from underwriteiq.services.redirects import build_redirect, format_suggestions
from underwriteiq.services.suggestions import build_suggestions
from underwriteiq.services.underwriter import compute_underwrite


def _filename_from_url(url: str) -> str:
    name = PurePosixPath(urlparse(url).path).name
    return name or "report.pdf"


class Processor:
    def __init__(
        self,
        jobs: JobStore,
        dedupe: DedupeIndex,
        blob: BlobClient,
        parser: ParseGateway,
        crm: CRMClient,
        letters: LetterDelivery,
        settings: Settings,
    ) -> None:
        self.jobs = jobs
        self.dedupe = dedupe
        self.blob = blob
        self.parser = parser
        self.crm = crm
        self.letters = letters
        self.settings = settings

    async def process(self, job_id: str, blob_url: str, timeout: float | None = None) -> JobStatus | None:
        """Run one job to a terminal state. Returns the final status (None if the job vanished)."""
        deadline = PROCESSING_TIMEOUT if timeout is None else timeout
        token = job_id_var.set(job_id)
        started = time.monotonic()
        blob_urls = {blob_url}
        try:
            try:
                await asyncio.wait_for(self._run(job_id, blob_url, blob_urls), timeout=deadline)
            except asyncio.TimeoutError:
                logger.error(f"Job {job_id}: deadline of {deadline:.0f}s exceeded")
                await self.jobs.fail(job_id, JobError(
                    code=ErrorCode.TIMEOUT,
                    message=default_message(ErrorCode.TIMEOUT),
                ))
            except ProcessingError as e:
                logger.warning(f"Job {job_id}: {e.code.value}: {e}")
                await self.jobs.fail(job_id, JobError(code=e.code, message=e.user_message))
            except Exception as e:
                logger.exception(f"Job {job_id}: unexpected failure: {e}")
                await self.jobs.fail(job_id, JobError(
                    code=ErrorCode.SYSTEM_ERROR,
                    message=default_message(ErrorCode.SYSTEM_ERROR),
                ))
            finally:
                await self._cleanup(job_id, blob_urls)

            job = await self.jobs.get(job_id)
            status = job.status if job else None
            elapsed = time.monotonic() - started
            logger.info(f"Job {job_id}: finished as {status.value if status else 'missing'} in {elapsed:.1f}s")
            return status
        finally:
            job_id_var.reset(token)

    async def _run(self, job_id: str, blob_url: str, blob_urls: set[str]) -> None:
        job = await self.jobs.get(job_id)
        if job is None:
            raise ProcessingError("job record missing", ErrorCode.JOB_NOT_FOUND)
        blob_urls.update(job.blob_urls)
        if job.status.is_terminal:
            logger.info(f"Job {job_id}: already {job.status.value}, skipping")
            return

        meta = job.metadata
        dedupe_keys = self.dedupe.keys_for(
            email=meta.email, phone=meta.phone, device_id=meta.device_id, ref_id=meta.ref_id
        )
        if not meta.force_reprocess:
            hit = await self.dedupe.check(dedupe_keys)
            if hit is not None:
                logger.info(f"Job {job_id}: dedupe hit on {hit.source}, skipping analysis")
                await self.jobs.complete(job_id, {"redirect": hit.redirect.to_wire(), "deduped": True})
                return

        pdf_bytes = await self._download(job_id, blob_url)

        await self.jobs.update_progress(job_id, PROGRESS_PARSING)
        parsed = await self.parser.parse(pdf_bytes, _filename_from_url(blob_url))
        if not parsed.ok or parsed.bureaus is None:
            code = parsed.code or ErrorCode.PARSE_FAILED
            raise ProcessingError(f"parser returned not ok ({code.value})", code, parsed.reason)

        bureaus = merge_bureaus([parsed.bureaus])

        if self.settings.identity_verification_enabled:
            await self.jobs.update_progress(job_id, PROGRESS_VALIDATING)
            identity = validate_identity(meta.name, bureaus)
            for warning in identity.warnings:
                logger.warning(f"Job {job_id}: identity: {warning}")
            if not identity.ok:
                raise ProcessingError(f"identity gate: {identity.code.value}", identity.code, identity.reason)

        await self.jobs.update_progress(job_id, PROGRESS_UNDERWRITING)
        verdict = compute_underwrite(bureaus, meta.business_age_months)
        suggestion_texts = build_suggestions(verdict, has_llc=meta.has_llc, llc_age_months=meta.llc_age_months)
        suggestions = format_suggestions(suggestion_texts)
        redirect = build_redirect(verdict, meta, suggestions, self.settings)

        written = await self.dedupe.store(dedupe_keys, redirect)
        if dedupe_keys.ordered() and written == 0:
            logger.warning(f"Job {job_id}: dedupe record not stored")

        await self.jobs.update_progress(job_id, PROGRESS_SIDE_EFFECTS)
        await self._side_effects(job, verdict, redirect.path, redirect.ref_id, bureaus)

        await self.jobs.complete(job_id, {
            "redirect": redirect.to_wire(),
            "underwrite": verdict,
            "bureaus": bureaus.to_wire(),
            "suggestions": suggestion_texts,
        })

    async def _download(self, job_id: str, blob_url: str) -> bytes:
        await self.jobs.update_progress(job_id, PROGRESS_DOWNLOADING)
        try:
            pdf_bytes = await self.blob.get(blob_url)
        except UpstreamError as e:
            raise ProcessingError(f"download failed: {e}", ErrorCode.SYSTEM_ERROR,
                                  "We couldn't retrieve your upload. Please try again.") from e
        if len(pdf_bytes) < MIN_PDF_BYTES:
            raise ProcessingError(f"pdf is {len(pdf_bytes)} bytes", ErrorCode.PDF_TOO_SMALL)
        logger.info(f"Job {job_id}: downloaded {len(pdf_bytes)} bytes")
        return pdf_bytes

    async def _side_effects(self, job: Job, verdict: dict, path: str, ref_id: str, bureaus) -> None:
        meta = job.metadata
        contact = {
            "email": meta.email,
            "phone": meta.phone,
            "name": meta.name,
            "businessName": meta.business_name,
            "businessAgeMonths": meta.business_age_months,
            "resultType": path,
            "creditScore": verdict["metrics"]["score"] or None,
            "totalFunding": verdict["totals"]["total_combined_funding"] or None,
            "refId": ref_id,
        }
        crm_result = await self.crm.upsert_contact(contact)
        if not crm_result.ok:
            logger.warning(f"Job {job.job_id}: CRM upsert failed: {crm_result.error}")

        self.letters.dispatch(crm_result.contact_id, path, bureaus, meta.name)

    async def _cleanup(self, job_id: str, blob_urls: set[str]) -> None:
        urls = sorted(u for u in blob_urls if u)
        if not urls:
            return
        try:
            await self.blob.delete(urls)
        except UpstreamError as e:
            logger.warning(f"Job {job_id}: blob cleanup failed: {e}")
