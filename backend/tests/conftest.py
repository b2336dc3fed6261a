"""Shared fixtures for underwriteiq backend tests."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

BLOB_TOKEN = "vercel_blob_rw_teststore_s3cr3tvalue"

# Settings are read once per process; pin them before anything imports the app.
os.environ.update({
    "OPENAI_API_KEY": "sk-test",
    "KV_BACKEND": "memory",
    "KV_URL": "redis://localhost:6379/0",
    "KV_TOKEN": "kv-test-token",
    "KV_PREFIX": "test:",
    "BLOB_READ_WRITE_TOKEN": BLOB_TOKEN,
    "GHL_API_KEY": "ghl-test-key",
    "GHL_LOCATION_ID": "loc-test",
    "CRON_SECRET": "cron-test-secret",
    "PUBLIC_BASE_URL": "https://uwiq.test",
    "REDIRECT_URL_FUNDABLE": "https://fundhub.ai/approved",
    "REDIRECT_URL_NOT_FUNDABLE": "https://fundhub.ai/repair",
    "LANGFUSE_PUBLIC_KEY": "",
    "LANGFUSE_SECRET_KEY": "",
})

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from underwriteiq.config import load_settings
from underwriteiq.core.blob import BlobRef, generate_client_token, verify_callback_signature
from underwriteiq.core.circuit_breaker import CircuitBreaker
from underwriteiq.core.constants import MIN_PDF_BYTES
from underwriteiq.core.kv import InMemoryKV, KeySpace
from underwriteiq.deps import build_services, set_services
from underwriteiq.models import JobMetadata, ParserResult
from underwriteiq.rate_limit import limiter
from underwriteiq.services.crm import CRMResult
from underwriteiq.services.job_store import JobStore


class FakeClock:
    """Monotonic seconds that only move when a test says so."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Disable slowapi rate limiting for all tests."""
    limiter.enabled = False
    yield
    limiter.enabled = True


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def kv(clock):
    return InMemoryKV(clock=clock)


@pytest.fixture()
def keys():
    return KeySpace("test:")


@pytest.fixture()
def job_store(kv, keys):
    return JobStore(kv, keys)


@pytest.fixture()
def metadata():
    return JobMetadata(email="John.Doe@Example.com", name="John Doe", phone="(555) 123-4567")


# ---------------------------------------------------------------------------
# Parsed report fixtures
# ---------------------------------------------------------------------------


def bureau_payload(score=720, util=25, negatives=0, names=("JOHN DOE",), report_date=None, **extra):
    """One parsed bureau slot as the LLM returns it."""
    return {
        "score": score,
        "utilization_pct": util,
        "inquiries": extra.pop("inquiries", 1),
        "negatives": negatives,
        "late_payment_events": extra.pop("late_payment_events", 0),
        "names": list(names),
        "addresses": ["123 Main St, Austin, TX 78701"],
        "employers": [],
        "tradelines": extra.pop("tradelines", [
            {"creditor": "Chase", "type": "revolving", "status": "Open", "limit": 10000,
             "balance": 2500, "opened": "2018-01"},
            {"creditor": "Amex", "type": "revolving", "status": "Open", "limit": 8000,
             "balance": 500, "opened": "2019-03"},
            {"creditor": "Toyota", "type": "auto", "status": "Open", "limit": 25000,
             "balance": 9000, "opened": "2020-06"},
        ]),
        "reportDate": report_date or date.today().isoformat(),
        **extra,
    }


@pytest.fixture()
def pdf_bytes():
    return b"%PDF-1.7\n" + b"0" * MIN_PDF_BYTES


# ---------------------------------------------------------------------------
# Service graph with every outbound collaborator mocked
# ---------------------------------------------------------------------------


@pytest.fixture()
def blob_mock(pdf_bytes):
    blob = MagicMock()
    blob.get = AsyncMock(return_value=pdf_bytes)
    blob.put = AsyncMock(side_effect=lambda path, body, *a, **kw: BlobRef(url=f"https://blob.test/{path}", pathname=path))
    blob.delete = AsyncMock(return_value=None)
    blob.generate_client_token = lambda pathname, **kw: generate_client_token(BLOB_TOKEN, pathname, **kw)
    blob.verify_callback_signature = lambda body, sig: verify_callback_signature(body, sig, BLOB_TOKEN)
    blob.aclose = AsyncMock()
    return blob


@pytest.fixture()
def crm_mock():
    crm = MagicMock()
    crm.upsert_contact = AsyncMock(return_value=CRMResult(ok=True, contact_id="contact-1"))
    crm.upload_letters = AsyncMock(return_value=CRMResult(ok=True, contact_id="contact-1"))
    crm.aclose = AsyncMock()
    return crm


@pytest.fixture()
def report_parser():
    parser = MagicMock()
    parser.parse = AsyncMock(return_value=ParserResult.model_validate(
        {"ok": True, "bureaus": {"experian": bureau_payload()}}
    ))
    return parser


@pytest.fixture()
def services(kv, clock, blob_mock, crm_mock, report_parser):
    """Full service graph over the in-memory KV. Letter delivery is stubbed out."""
    built = build_services(
        load_settings(),
        kv=kv,
        blob=blob_mock,
        crm=crm_mock,
        report_parser=report_parser,
        breaker=CircuitBreaker("openai", failure_threshold=3, cooldown=30, clock=clock),
    )
    built.letters.dispatch = MagicMock()
    set_services(built)
    yield built
    set_services(None)


@pytest.fixture()
def make_bureau():
    return bureau_payload
