"""Process-wide service graph shared by the routes.

Built lazily on first use so tests can install their own graph with
``set_services`` before any request is served.
"""

from dataclasses import dataclass

from underwriteiq.config import Settings, load_settings
from underwriteiq.core.blob import BlobClient
from underwriteiq.core.circuit_breaker import CircuitBreaker
from underwriteiq.core.constants import BREAKER_COOLDOWN, BREAKER_FAILURE_THRESHOLD
from underwriteiq.core.kv import KeySpace, create_kv
from underwriteiq.core.logger import logger
from underwriteiq.services.crm import CRMClient
from underwriteiq.services.dedupe import DedupeIndex
from underwriteiq.services.job_queue import JobQueue
from underwriteiq.services.job_store import JobStore
from underwriteiq.services.letters import LetterDelivery
from underwriteiq.services.locks import UploadLock
from underwriteiq.services.parser import ParseGateway, ReportParser
from underwriteiq.services.processor import Processor


@dataclass
class Services:
    settings: Settings
    kv: object
    keys: KeySpace
    jobs: JobStore
    lock: UploadLock
    queue: JobQueue
    dedupe: DedupeIndex
    blob: BlobClient
    breaker: CircuitBreaker
    parser: ParseGateway
    crm: CRMClient
    letters: LetterDelivery
    processor: Processor

    async def aclose(self) -> None:
        await self.blob.aclose()
        await self.crm.aclose()
        await self.kv.aclose()


def build_services(
    settings: Settings,
    kv=None,
    blob: BlobClient | None = None,
    crm: CRMClient | None = None,
    report_parser: ReportParser | None = None,
    breaker: CircuitBreaker | None = None,
) -> Services:
    """Wire every collaborator. Any argument left as None gets the production default."""
    kv = kv if kv is not None else create_kv(settings)
    keys = KeySpace(settings.kv_prefix)
    jobs = JobStore(kv, keys)
    blob = blob or BlobClient(settings.blob_read_write_token, settings.blob_api_url)
    crm = crm or CRMClient(settings.ghl_api_key, settings.ghl_location_id, settings.ghl_api_url)
    breaker = breaker or CircuitBreaker("openai", BREAKER_FAILURE_THRESHOLD, BREAKER_COOLDOWN)
    dedupe = DedupeIndex(kv, keys)
    parser = ParseGateway(
        report_parser or ReportParser(), kv, keys, breaker, timeout=settings.openai_timeout_seconds
    )
    letters = LetterDelivery(blob, crm)
    return Services(
        settings=settings,
        kv=kv,
        keys=keys,
        jobs=jobs,
        lock=UploadLock(kv, keys),
        queue=JobQueue(kv, keys, jobs),
        dedupe=dedupe,
        blob=blob,
        breaker=breaker,
        parser=parser,
        crm=crm,
        letters=letters,
        processor=Processor(jobs, dedupe, blob, parser, crm, letters, settings),
    )


_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(load_settings())
        logger.info(f"Services: ready (kv={_services.settings.kv_backend}, prefix={_services.keys.prefix})")
    return _services


def set_services(services: Services | None) -> None:
    global _services
    _services = services


async def close_services() -> None:
    global _services
    if _services is not None:
        await _services.aclose()
        _services = None
