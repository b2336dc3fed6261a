"""Post-parse identity gate: the report must belong to the submitter and be recent.

Missing data (no submitted name, no names on the report, no report date) is a
warning, never a failure.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime

from underwriteiq.core.constants import MAX_REPORT_AGE_DAYS
from underwriteiq.core.errors import ErrorCode
from underwriteiq.models import Bureaus

_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%Y/%m/%d")


@dataclass
class IdentityResult:
    ok: bool = True
    code: ErrorCode | None = None
    reason: str = ""
    matched_name: str | None = None
    report_date: date | None = None
    age_days: int | None = None
    warnings: list[str] = field(default_factory=list)


def normalize_name(name: str | None) -> str:
    if not name:
        return ""
    letters_only = re.sub(r"[^a-z\s]", "", name.lower())
    return re.sub(r"\s+", " ", letters_only).strip()


def _first_last(full_name: str | None) -> tuple[str, str]:
    parts = normalize_name(full_name).split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[-1]


def names_match(submitted: str | None, reported: str | None) -> bool:
    """First names match (a lone initial matches), last names match when both exist."""
    sub_first, sub_last = _first_last(submitted)
    rep_first, rep_last = _first_last(reported)
    if not sub_first or not rep_first:
        return False

    first_ok = (
        sub_first == rep_first
        or (len(sub_first) == 1 and rep_first.startswith(sub_first))
        or (len(rep_first) == 1 and sub_first.startswith(rep_first))
    )
    if not first_ok:
        return False
    if sub_last and rep_last:
        return sub_last == rep_last
    return True


def collect_report_names(bureaus: Bureaus) -> list[str]:
    seen: dict[str, None] = {}
    for slot in bureaus.present():
        for name in getattr(bureaus, slot).names:
            seen.setdefault(name, None)
    return list(seen)


def parse_report_date(value: str | None) -> date | None:
    if not value:
        return None
    value = value.strip()
    iso = re.match(r"^(\d{4})-(\d{2})-(\d{2})", value)
    us = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})", value)
    try:
        if iso:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        if us:
            return date(int(us.group(3)), int(us.group(1)), int(us.group(2)))
    except ValueError:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def most_recent_report_date(bureaus: Bureaus) -> date | None:
    dates = [parse_report_date(getattr(bureaus, slot).report_date) for slot in bureaus.present()]
    dates = [d for d in dates if d is not None]
    return max(dates) if dates else None


def validate_identity(submitted_name: str | None, bureaus: Bureaus, today: date | None = None) -> IdentityResult:
    today = today or date.today()
    result = IdentityResult()

    report_names = collect_report_names(bureaus)
    if not submitted_name:
        result.warnings.append("No name submitted; skipped name match")
    elif not report_names:
        result.warnings.append("Could not verify name: no names found in report")
    else:
        result.matched_name = next((n for n in report_names if names_match(submitted_name, n)), None)
        if result.matched_name is None:
            result.ok = False
            result.code = ErrorCode.IDENTITY_MISMATCH
            result.reason = (
                f'The name "{submitted_name}" does not match any name on this credit report. '
                "Please upload a report that belongs to you."
            )
            return result

    report_date = most_recent_report_date(bureaus)
    if report_date is None:
        result.warnings.append("Could not verify report date")
        return result

    result.report_date = report_date
    result.age_days = (today - report_date).days
    if result.age_days > MAX_REPORT_AGE_DAYS:
        result.ok = False
        result.code = ErrorCode.REPORT_TOO_OLD
        result.reason = (
            f"This credit report is {result.age_days} days old. "
            f"Please upload a report from the last {MAX_REPORT_AGE_DAYS} days."
        )
    return result
