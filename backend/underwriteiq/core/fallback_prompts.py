"""Embedded fallback prompts, used when Langfuse is unavailable.

Frozen copies of the prompts pushed by scripts/push_prompts.py.
"""

_BUREAU_SHAPE = (
    '{{\n'
    '  "score": number | null,\n'
    '  "utilization_pct": number | null,\n'
    '  "inquiries": number | null,\n'
    '  "negatives": number | null,\n'
    '  "late_payment_events": number | null,\n'
    '  "reportDate": "YYYY-MM-DD" | null,\n'
    '  "names": string[],\n'
    '  "addresses": string[],\n'
    '  "employers": string[],\n'
    '  "tradelines": [\n'
    '    {{"creditor": string | null, "type": "revolving" | "installment" | "auto" | "mortgage" | "other" | null,\n'
    '     "status": string | null, "balance": number | null, "limit": number | null,\n'
    '     "opened": "YYYY-MM" | "YYYY-MM-DD" | null, "closed": "YYYY-MM" | "YYYY-MM-DD" | null,\n'
    '     "is_au": boolean | null}}\n'
    '  ]\n'
    '}}'
)

FALLBACK_PROMPTS = {
    "credit-report-extract": {
        "system": (
            "You are UnderwriteIQ, a credit report extraction engine. "
            "You receive one consumer credit report PDF and extract data PER BUREAU "
            "(Experian, Equifax, TransUnion).\n\n"
            "## RULES\n"
            "1. Match each tradeline to the bureau that reports it\n"
            "2. A bureau that does not appear in the report is null\n"
            "3. utilization_pct is a percentage (0-100), not a fraction\n"
            "4. reportDate is the date the report was pulled, per bureau\n"
            "5. If unsure of a value, use null. Do NOT invent creditor names\n\n"
            "Return ONLY valid JSON. No markdown, no code fences, no explanation."
        ),
        "user": (
            "Extract per-bureau data from the attached credit report ({filename}).\n\n"
            "Return JSON:\n"
            '{{"bureaus": {{"experian": BUREAU | null, "equifax": BUREAU | null, "transunion": BUREAU | null}}}}\n\n'
            "where BUREAU is:\n" + _BUREAU_SHAPE
        ),
        "config": {
            "temperature": 0.0,
            "max_tokens": 6000,
            "response_format": "json",
        },
    },
}
