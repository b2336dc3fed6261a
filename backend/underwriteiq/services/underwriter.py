"""Underwriting engine: per-bureau funding math and the fundable verdict.

Pure function over parsed bureaus. The primary bureau is the available one
with the highest sanitized score; the verdict is computed on it.
"""

import re
from datetime import date

from underwriteiq.core.constants import BUREAUS
from underwriteiq.models import Bureau, Bureaus

_LABELS = {"experian": "Experian", "equifax": "Equifax", "transunion": "TransUnion"}
_DEROGATORY = ("chargeoff", "charge-off", "collection", "derog", "repossession", "foreclosure")
_INSTALLMENT_TYPES = ("installment", "auto", "mortgage")

FUNDABLE_MIN_SCORE = 700
FUNDABLE_MAX_UTIL = 30
SEASONED_MONTHS = 24
CARD_STACK_MIN_LIMIT = 5_000
CARD_STACK_MULTIPLIER = 5.5
LOAN_STACK_MIN_AMOUNT = 10_000
LOAN_STACK_MULTIPLIER = 3.0
THIN_FILE_TRADELINES = 3
DEFAULT_BANNER_FUNDING = 15_000


def sanitize_score(score: float | None) -> float | None:
    if score is None:
        return None
    if score > 9000:
        score = score // 10  # OCR glued a digit on: 90120 -> 9012, then capped
    score = min(score, 850)
    return score if score >= 300 else None


def months_since(value: str | None, today: date) -> int | None:
    if not value:
        return None
    match = re.match(r"^(\d{4})-(\d{2})", value)
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    return (today.year - year) * 12 + (today.month - month)


def _zero(v: float | None) -> float:
    return 0 if v is None else v


def _bureau_summary(key: str, bureau: Bureau | None, today: date) -> dict:
    available = bureau is not None
    bureau = bureau or Bureau()
    score = sanitize_score(bureau.score)
    util = bureau.utilization_pct
    neg = _zero(bureau.negatives)
    lates = _zero(bureau.late_payment_events)

    highest_revolving = 0.0
    highest_installment = 0.0
    has_revolving = False
    has_installment = False
    positive_count = 0

    for tl in bureau.tradelines:
        kind = (tl.type or "").lower()
        status = (tl.status or "").lower()
        limit = _zero(tl.limit)
        balance = _zero(tl.balance)
        age = months_since(tl.opened, today)
        derog = any(word in status for word in _DEROGATORY)
        seasoned = age is not None and age >= SEASONED_MONTHS

        if not derog:
            positive_count += 1

        if kind == "revolving":
            has_revolving = True
            if "open" in status and seasoned and limit > highest_revolving:
                highest_revolving = limit

        if kind in _INSTALLMENT_TYPES:
            has_installment = True
            original_amount = limit or balance
            if original_amount > 0 and seasoned and not derog:
                highest_installment = max(highest_installment, original_amount)

    can_card_stack = has_revolving and highest_revolving >= CARD_STACK_MIN_LIMIT
    can_loan_stack = has_installment and highest_installment >= LOAN_STACK_MIN_AMOUNT and lates == 0
    card_funding = highest_revolving * CARD_STACK_MULTIPLIER if can_card_stack else 0
    loan_funding = highest_installment * LOAN_STACK_MULTIPLIER if can_loan_stack else 0

    return {
        "key": key,
        "label": _LABELS[key],
        "available": available,
        "score": score or 0,
        "util": util,
        "neg": neg,
        "lates": lates,
        "inquiries": _zero(bureau.inquiries),
        "highest_revolving_limit": highest_revolving,
        "highest_installment_amount": highest_installment,
        "has_any_revolving": has_revolving,
        "has_any_installment": has_installment,
        "thin_file": positive_count < THIN_FILE_TRADELINES,
        "file_all_negative": positive_count == 0 and neg > 0,
        "can_card_stack": can_card_stack,
        "can_loan_stack": can_loan_stack,
        "can_dual_stack": can_card_stack and can_loan_stack,
        "card_funding": card_funding,
        "loan_funding": loan_funding,
        "total_personal_funding": card_funding + loan_funding,
        "fundable": _is_fundable(score, util, neg),
        "positive_tradelines_count": positive_count,
    }


def _is_fundable(score: float | None, util: float | None, neg: float) -> bool:
    return (
        score is not None
        and score >= FUNDABLE_MIN_SCORE
        and (util is None or util <= FUNDABLE_MAX_UTIL)
        and neg == 0
    )


def compute_underwrite(bureaus: Bureaus, business_age_months: float | None = None, today: date | None = None) -> dict:
    today = today or date.today()
    summaries = [_bureau_summary(key, getattr(bureaus, key), today) for key in BUREAUS]
    by_key = {s["key"]: s for s in summaries}

    primary = next((s for s in summaries if s["available"]), summaries[0])
    for s in summaries:
        if s["available"] and s["score"] > primary["score"]:
            primary = s

    fundable_count = sum(1 for s in summaries if s["available"] and s["fundable"])
    scale = 1 / 3 if fundable_count == 1 else 1
    card_funding = sum(s["card_funding"] for s in summaries if s["available"]) * scale
    loan_funding = sum(s["loan_funding"] for s in summaries if s["available"]) * scale
    total_personal = card_funding + loan_funding

    multiplier = 0.0
    if business_age_months is not None and primary["card_funding"] > 0:
        if business_age_months < 12:
            multiplier = 0.5
        elif business_age_months < 24:
            multiplier = 1.0
        else:
            multiplier = 2.0
    business_funding = primary["card_funding"] * multiplier

    inquiries = {
        "ex": by_key["experian"]["inquiries"],
        "eq": by_key["equifax"]["inquiries"],
        "tu": by_key["transunion"]["inquiries"],
    }
    inquiries["total"] = inquiries["ex"] + inquiries["eq"] + inquiries["tu"]

    needs_util_reduction = primary["util"] is not None and primary["util"] > FUNDABLE_MAX_UTIL
    primary_score = primary["score"] if primary["available"] else None

    return {
        "fundable": _is_fundable(primary_score or None, primary["util"], primary["neg"]),
        "primary_bureau": primary["key"],
        "metrics": {
            "score": primary["score"],
            "utilization_pct": primary["util"],
            "negative_accounts": primary["neg"],
            "late_payment_events": primary["lates"],
            "inquiries": inquiries,
        },
        "per_bureau": by_key,
        "personal": {
            "highest_revolving_limit": primary["highest_revolving_limit"],
            "highest_installment_amount": primary["highest_installment_amount"],
            "can_card_stack": primary["can_card_stack"],
            "can_loan_stack": primary["can_loan_stack"],
            "can_dual_stack": primary["can_dual_stack"],
            "card_funding": card_funding,
            "loan_funding": loan_funding,
            "total_personal_funding": total_personal,
        },
        "business": {
            "business_age_months": business_age_months,
            "can_business_fund": multiplier > 0,
            "business_multiplier": multiplier,
            "business_funding": business_funding,
        },
        "totals": {
            "total_personal_funding": total_personal,
            "total_business_funding": business_funding,
            "total_combined_funding": total_personal + business_funding,
        },
        "optimization": {
            "needs_util_reduction": needs_util_reduction,
            "target_util_pct": FUNDABLE_MAX_UTIL if needs_util_reduction else None,
            "needs_new_primary_revolving": (
                not primary["has_any_revolving"] or primary["highest_revolving_limit"] < CARD_STACK_MIN_LIMIT
            ),
            "needs_inquiry_cleanup": inquiries["total"] > 0,
            "needs_negative_cleanup": primary["neg"] > 0,
            "needs_file_buildout": primary["thin_file"] or primary["file_all_negative"],
            "thin_file": primary["thin_file"],
            "file_all_negative": primary["file_all_negative"],
        },
        "lite_banner_funding": primary["card_funding"] or card_funding or DEFAULT_BANNER_FUNDING,
    }
