"""Push the credit-report extraction prompt to Langfuse as a versioned chat prompt.

Run once to seed Langfuse, then edit the prompt via the Langfuse UI.
Re-run to create a new version (old versions are preserved).

Usage:
    python scripts/push_prompts.py
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from langfuse import Langfuse  # noqa: E402


# ═══════════════════════════════════════════════════════════════════════════════
# CREDIT REPORT EXTRACTION (per bureau)
# ═══════════════════════════════════════════════════════════════════════════════

EXTRACT_SYSTEM = """You are UnderwriteIQ, a credit report extraction engine. You receive ONE consumer credit report PDF and extract data PER BUREAU so an underwriting engine can score it.

## YOUR TASK
Read the whole report. For each bureau present (Experian, Equifax, TransUnion), extract the summary metrics, the identity block, and every tradeline.

## STEP-BY-STEP APPROACH (do this internally)
1. Identify which bureaus the report covers. Tri-merge reports cover all three; single-bureau reports cover one
2. For each bureau, read the score and the report date from the header
3. Read the identity section: every name variation, address and employer listed
4. Walk the accounts section. Attribute each tradeline to the bureau(s) reporting it
5. Count hard inquiries, negative accounts (charge-offs, collections, repossessions, foreclosures) and late payment events per bureau
6. Compute utilization_pct = total revolving balance / total revolving limit * 100 when the report does not state it

## FIELD RULES
- score: the bureau's consumer score (300-850). null if not shown
- utilization_pct: a percentage (0-100), never a fraction
- reportDate: the date this bureau's report was pulled, as YYYY-MM-DD
- tradelines[].type: one of revolving, installment, auto, mortgage, other
- tradelines[].status: the status text as printed (e.g. "Open", "Closed", "Charge-off", "Collection")
- tradelines[].opened / closed: YYYY-MM or YYYY-MM-DD
- tradelines[].is_au: true when the consumer is an authorized user on the account

## RULES
1. A bureau that does not appear in the report is null
2. If unsure of a value, use null
3. Do NOT invent or guess creditor names
4. Output ONLY JSON, nothing else. No markdown, no commentary"""

EXTRACT_USER = """Extract per-bureau data from the attached credit report ({{filename}}).

Return JSON:
{"bureaus": {"experian": BUREAU | null, "equifax": BUREAU | null, "transunion": BUREAU | null}}

where BUREAU is:
{
  "score": number | null,
  "utilization_pct": number | null,
  "inquiries": number | null,
  "negatives": number | null,
  "late_payment_events": number | null,
  "reportDate": "YYYY-MM-DD" | null,
  "names": string[],
  "addresses": string[],
  "employers": string[],
  "tradelines": [
    {"creditor": string | null, "type": string | null, "status": string | null,
     "balance": number | null, "limit": number | null,
     "opened": string | null, "closed": string | null, "is_au": boolean | null}
  ]
}"""


def main():
    public_key = os.getenv("LANGFUSE_PUBLIC_KEY")
    secret_key = os.getenv("LANGFUSE_SECRET_KEY")
    host = os.getenv("LANGFUSE_HOST", "https://cloud.langfuse.com")

    if not public_key or not secret_key:
        print("ERROR: LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY must be set")
        sys.exit(1)

    client = Langfuse(public_key=public_key, secret_key=secret_key, host=host)

    client.create_prompt(
        name="credit-report-extract",
        type="chat",
        prompt=[
            {"role": "system", "content": EXTRACT_SYSTEM},
            {"role": "user", "content": EXTRACT_USER},
        ],
        labels=["production"],
        config={
            "model": "gpt-4o-mini",
            "temperature": 0.0,
            "max_tokens": 6000,
            "response_format": "json",
        },
    )
    print("Pushed: credit-report-extract (per-bureau schema, field rules, step-by-step)")

    client.flush()
    print("View at: https://cloud.langfuse.com → Prompts")


if __name__ == "__main__":
    main()
