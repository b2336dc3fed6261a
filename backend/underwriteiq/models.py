"""Pydantic models for job records, verdict artifacts and API bodies.

Everything stored in the KV or sent over the wire uses camelCase keys; the
bureau payload keeps the parser's snake_case field names.
"""

import math
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from underwriteiq.core.constants import BUREAUS
from underwriteiq.core.errors import ErrorCode


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class JobMetadata(CamelModel):
    """User-supplied facts captured at token time. Never changes after create."""

    email: str
    phone: str | None = None
    name: str | None = None
    business_name: str | None = None
    business_age_months: float | None = None
    llc_age_months: float | None = None
    has_llc: bool = Field(default=False, alias="hasLLC")
    ref_id: str | None = None
    device_id: str | None = None
    force_reprocess: bool = False

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("phone", "name", "business_name", "ref_id", "device_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class JobError(BaseModel):
    message: str
    code: ErrorCode


class Job(CamelModel):
    job_id: str
    status: JobStatus = JobStatus.PENDING
    progress: str = ""
    metadata: JobMetadata
    blob_urls: list[str] = []
    file_count: int = 0
    result: dict[str, Any] | None = None
    error: JobError | None = None
    created_at: str
    updated_at: str
    completed_at: str | None = None

    @model_validator(mode="after")
    def _check_status_shape(self):
        if self.status == JobStatus.COMPLETE and self.result is None:
            raise ValueError("complete job must carry a result")
        if self.status == JobStatus.ERROR and self.error is None:
            raise ValueError("error job must carry an error")
        if self.status != JobStatus.COMPLETE and self.result is not None:
            raise ValueError(f"{self.status.value} job must not carry a result")
        if self.status != JobStatus.ERROR and self.error is not None:
            raise ValueError(f"{self.status.value} job must not carry an error")
        return self


# ---------------------------------------------------------------------------
# Verdict artifacts
# ---------------------------------------------------------------------------


class Suggestion(BaseModel):
    title: str
    description: str = ""


class Redirect(CamelModel):
    path: Literal["funding", "repair"]
    result_url: str
    ref_id: str
    affiliate_link: str | None = None
    last_upload: str
    days_remaining: int
    suggestions: list[Suggestion] = []
    query: dict[str, float] = {}


# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------

_NULL_STRINGS = {"", "null", "none", "n/a", "na", "-"}


def coerce_number(v: Any) -> float | None:
    """LLM output sometimes carries numbers as strings ("720", "25%", "null")."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, str):
        cleaned = v.strip().lower().replace(",", "").replace("$", "").rstrip("%")
        if cleaned in _NULL_STRINGS:
            return None
        try:
            v = float(cleaned)
        except ValueError:
            return None
    if isinstance(v, (int, float)) and math.isfinite(v):
        return v
    return None


class Tradeline(BaseModel):
    model_config = ConfigDict(extra="ignore")

    creditor: str | None = None
    type: str | None = None
    status: str | None = None
    balance: float | None = None
    limit: float | None = None
    opened: str | None = None
    closed: str | None = None
    is_au: bool | None = None

    @field_validator("balance", "limit", mode="before")
    @classmethod
    def _numbers(cls, v):
        return coerce_number(v)

    @field_validator("creditor", "type", "status", "opened", "closed", mode="before")
    @classmethod
    def _strings(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    @field_validator("is_au", mode="before")
    @classmethod
    def _flag(cls, v):
        return v if isinstance(v, bool) else None


class Bureau(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    score: float | None = None
    utilization_pct: float | None = None
    inquiries: float | None = None
    negatives: float | None = None
    late_payment_events: float | None = None
    names: list[str] = []
    addresses: list[str] = []
    employers: list[str] = []
    tradelines: list[Tradeline] = []
    report_date: str | None = Field(default=None, alias="reportDate")

    @field_validator("score", "utilization_pct", "inquiries", "negatives", "late_payment_events", mode="before")
    @classmethod
    def _numbers(cls, v):
        return coerce_number(v)

    @field_validator("names", "addresses", "employers", mode="before")
    @classmethod
    def _string_lists(cls, v):
        if not isinstance(v, list):
            return []
        return [str(item).strip() for item in v if isinstance(item, (str, int, float)) and str(item).strip()]

    @field_validator("tradelines", mode="before")
    @classmethod
    def _tradeline_list(cls, v):
        if not isinstance(v, list):
            return []
        return [item for item in v if isinstance(item, dict)]

    @field_validator("report_date", mode="before")
    @classmethod
    def _date_string(cls, v):
        if v is None:
            return None
        return str(v).strip() or None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Bureaus(BaseModel):
    experian: Bureau | None = None
    equifax: Bureau | None = None
    transunion: Bureau | None = None

    @field_validator("experian", "equifax", "transunion", mode="before")
    @classmethod
    def _slot(cls, v):
        return v if isinstance(v, (dict, Bureau)) else None

    def present(self) -> list[str]:
        return [name for name in BUREAUS if getattr(self, name) is not None]

    def to_wire(self) -> dict[str, Any]:
        return {
            name: (slot.to_wire() if (slot := getattr(self, name)) is not None else None)
            for name in BUREAUS
        }


class ParserResult(BaseModel):
    ok: bool
    reason: str | None = None
    code: ErrorCode | None = None
    bureaus: Bureaus | None = None


# ---------------------------------------------------------------------------
# API bodies
# ---------------------------------------------------------------------------


class UploadTokenRequest(JobMetadata):
    model_config = ConfigDict(extra="ignore")

    email: str = ""

    def to_metadata(self) -> JobMetadata:
        return JobMetadata.model_validate(self.model_dump())


class StartProcessingRequest(CamelModel):
    job_id: str = ""


class BlobCallback(BaseModel):
    """Envelope the blob store posts to /blob-upload."""

    type: str
    payload: dict[str, Any] = {}
