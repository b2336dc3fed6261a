"""Redirect artifact: where the user lands after a verdict, plus the share link."""

import math
import re
import secrets
import time
from urllib.parse import quote, urlencode

from underwriteiq.config import Settings
from underwriteiq.core.constants import DEDUPE_TTL_DAYS
from underwriteiq.models import JobMetadata, Redirect, Suggestion
from underwriteiq.services.job_store import to_base36, utc_now_iso

DEFAULT_FUNDABLE_URL = "https://fundhub.ai/funding-approved-analyzer-462533"
DEFAULT_NOT_FUNDABLE_URL = "https://fundhub.ai/fix-my-credit-analyzer"

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def safe_num(value) -> float:
    """Finite number or 0. Query strings must never carry NaN/inf/None."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _query_value(number: float) -> str:
    return str(int(number)) if number.is_integer() else f"{number:.2f}".rstrip("0").rstrip(".")


def generate_ref_id() -> str:
    return f"ref-{to_base36(int(time.time() * 1000))}{secrets.token_hex(2)}"


def format_suggestions(texts: list[str]) -> list[Suggestion]:
    """First sentence becomes the title, the rest the description."""
    formatted = []
    for text in texts:
        head, *rest = _SENTENCE_END.split(text.strip(), maxsplit=1)
        formatted.append(Suggestion(title=head, description=rest[0] if rest else ""))
    return formatted


def build_redirect(
    verdict: dict,
    metadata: JobMetadata,
    suggestions: list[Suggestion],
    settings: Settings,
) -> Redirect:
    personal = verdict.get("personal", {})
    business = verdict.get("business", {})
    totals = verdict.get("totals", {})
    metrics = verdict.get("metrics", {})
    inquiries = metrics.get("inquiries", {})

    query = {
        "personalTotal": safe_num(personal.get("total_personal_funding")),
        "businessTotal": safe_num(business.get("business_funding")),
        "totalCombined": safe_num(totals.get("total_combined_funding")),
        "score": safe_num(metrics.get("score")),
        "util": safe_num(metrics.get("utilization_pct")),
        "inqEx": safe_num(inquiries.get("ex")),
        "inqTu": safe_num(inquiries.get("tu")),
        "inqEq": safe_num(inquiries.get("eq")),
        "neg": safe_num(metrics.get("negative_accounts")),
        "late": safe_num(metrics.get("late_payment_events")),
    }

    fundable = bool(verdict.get("fundable"))
    if fundable:
        base_url = settings.redirect_url_fundable or DEFAULT_FUNDABLE_URL
    else:
        base_url = settings.redirect_url_not_fundable or DEFAULT_NOT_FUNDABLE_URL
    separator = "&" if "?" in base_url else "?"
    result_url = f"{base_url}{separator}{urlencode({k: _query_value(v) for k, v in query.items()})}"

    ref_id = metadata.ref_id or generate_ref_id()
    affiliate_link = None
    if settings.affiliate_dashboard_enabled:
        base = settings.redirect_base_url.rstrip("/")
        affiliate_link = f"{base}/credit-analyzer.html?ref={quote(ref_id)}"

    return Redirect(
        path="funding" if fundable else "repair",
        result_url=result_url,
        ref_id=ref_id,
        affiliate_link=affiliate_link,
        last_upload=utc_now_iso(),
        days_remaining=DEDUPE_TTL_DAYS,
        suggestions=suggestions,
        query=query,
    )
