"""GoHighLevel CRM client: contact upsert and letter URL custom fields.

CRM failures never fail a job. Every method returns a CRMResult instead of raising.
"""

from dataclasses import dataclass

import httpx

from underwriteiq.core.constants import DEFAULT_HTTP_TIMEOUT
from underwriteiq.core.logger import logger

API_VERSION = "2021-07-28"
CONTACT_TAGS = ["underwriteiq", "credit-analyzer"]
CONTACT_SOURCE = "UnderwriteIQ Analyzer"


@dataclass
class CRMResult:
    ok: bool
    contact_id: str | None = None
    error: str | None = None


def split_name(full_name: str | None) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


class CRMClient:
    def __init__(
        self,
        api_key: str,
        location_id: str,
        api_url: str = "https://services.leadconnectorhq.com",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.location_id = location_id
        self.api_url = api_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.location_id)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Version": API_VERSION,
            "Accept": "application/json",
        }

    async def upsert_contact(self, contact: dict) -> CRMResult:
        """Create or update a contact keyed by email.

        ``contact`` keys: email, phone, name, businessName, businessAgeMonths,
        resultType, creditScore, totalFunding, refId.
        """
        if not self.configured:
            logger.warning("CRM: not configured, skipping contact upsert")
            return CRMResult(ok=False, error="CRM not configured")

        first, last = split_name(contact.get("name"))
        payload = {
            "locationId": self.location_id,
            "firstName": first,
            "lastName": last,
            "email": contact.get("email") or "",
            "phone": contact.get("phone") or "",
            "source": CONTACT_SOURCE,
            "tags": CONTACT_TAGS,
        }
        if contact.get("businessName"):
            payload["companyName"] = contact["businessName"]

        custom_fields = []
        for key, field_key in (
            ("businessAgeMonths", "business_age_months"),
            ("resultType", "analyzer_result_type"),
            ("creditScore", "credit_score"),
            ("totalFunding", "total_funding_estimate"),
            ("refId", "referral_id"),
        ):
            if contact.get(key) not in (None, ""):
                custom_fields.append({"key": field_key, "field_value": str(contact[key])})
        if custom_fields:
            payload["customFields"] = custom_fields

        try:
            resp = await self._http.post(f"{self.api_url}/contacts/upsert", json=payload, headers=self._headers())
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"CRM: contact upsert returned HTTP {e.response.status_code}")
            return CRMResult(ok=False, error=f"CRM API error: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"CRM: contact upsert failed: {e}")
            return CRMResult(ok=False, error=str(e))

        data = resp.json()
        contact_id = (data.get("contact") or {}).get("id") or data.get("id")
        if not contact_id:
            return CRMResult(ok=False, error="CRM response carried no contact id")
        return CRMResult(ok=True, contact_id=contact_id)

    async def upload_letters(self, contact_id: str, urls: dict[str, str], path: str) -> CRMResult:
        """Record letter PDF URLs on the contact as cf_uq_<letter>_url custom fields."""
        if not self.configured:
            return CRMResult(ok=False, error="CRM not configured")

        fields = [{"key": f"cf_uq_{name}_url", "field_value": url} for name, url in urls.items()]
        fields.append({"key": "cf_uq_path", "field_value": path})
        fields.append({"key": "cf_uq_letters_ready", "field_value": "true"})

        try:
            resp = await self._http.put(
                f"{self.api_url}/contacts/{contact_id}",
                json={"customFields": fields},
                headers=self._headers(),
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"CRM: letter URL update returned HTTP {e.response.status_code}")
            return CRMResult(ok=False, contact_id=contact_id, error=f"CRM API error: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"CRM: letter URL update failed: {e}")
            return CRMResult(ok=False, contact_id=contact_id, error=str(e))
        return CRMResult(ok=True, contact_id=contact_id)

    async def aclose(self) -> None:
        await self._http.aclose()
