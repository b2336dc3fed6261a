"""Dedupe index: prior verdicts keyed by user, device and referral identity.

A hit lets a returning user skip upload + LLM work for 30 days. Reads refresh
``daysRemaining`` in the returned copy but never extend the TTL.
"""

import asyncio
import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError
from redis.exceptions import RedisError

from underwriteiq.core.constants import DEDUPE_TTL, DEDUPE_TTL_DAYS
from underwriteiq.core.kv import KeySpace
from underwriteiq.core.logger import logger
from underwriteiq.models import Redirect
from underwriteiq.services.job_store import utc_now_iso

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class DedupeKeys:
    user: str | None = None
    device: str | None = None
    ref: str | None = None

    def ordered(self) -> list[tuple[str, str]]:
        return [(source, key) for source, key in (("user", self.user), ("device", self.device), ("ref", self.ref)) if key]


@dataclass
class DedupeHit:
    source: str
    redirect: Redirect


def user_fingerprint(email: str | None, phone: str | None) -> str | None:
    """sha256(lower(email)|digits(phone)); None unless both are present."""
    email = (email or "").strip().lower()
    digits = re.sub(r"\D", "", phone or "")
    if not email or not digits:
        return None
    return hashlib.sha256(f"{email}|{digits}".encode()).hexdigest()


def build_dedupe_keys(
    keys: KeySpace,
    email: str | None = None,
    phone: str | None = None,
    device_id: str | None = None,
    ref_id: str | None = None,
) -> DedupeKeys:
    fingerprint = user_fingerprint(email, phone)
    return DedupeKeys(
        user=keys.user(fingerprint) if fingerprint else None,
        device=keys.device(device_id.strip()) if device_id and device_id.strip() else None,
        ref=keys.ref(ref_id.strip()) if ref_id and ref_id.strip() else None,
    )


def compute_days_remaining(last_upload: str, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    try:
        uploaded = datetime.fromisoformat(last_upload.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if uploaded.tzinfo is None:
        uploaded = uploaded.replace(tzinfo=timezone.utc)
    elapsed_days = int((now - uploaded).total_seconds() // _SECONDS_PER_DAY)
    return max(0, min(DEDUPE_TTL_DAYS, DEDUPE_TTL_DAYS - elapsed_days))


class DedupeIndex:
    def __init__(self, kv, keys: KeySpace, clock=None) -> None:
        self.kv = kv
        self.keys = keys
        # Returns an aware datetime; tests pin it.
        self._now = clock or (lambda: datetime.now(timezone.utc))

    def keys_for(self, email=None, phone=None, device_id=None, ref_id=None) -> DedupeKeys:
        return build_dedupe_keys(self.keys, email=email, phone=phone, device_id=device_id, ref_id=ref_id)

    async def _read(self, key: str) -> Redirect | None:
        try:
            raw = await self.kv.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Dedupe: read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            redirect = Redirect.model_validate(record["redirect"])
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Dedupe: corrupt record at {key}: {e}")
            return None
        last_upload = record.get("lastUpload") or redirect.last_upload
        return redirect.model_copy(update={
            "last_upload": last_upload,
            "days_remaining": compute_days_remaining(last_upload, self._now()),
        })

    async def check(self, keys: DedupeKeys) -> DedupeHit | None:
        """First hit in user -> device -> ref order."""
        for source, key in keys.ordered():
            redirect = await self._read(key)
            if redirect is not None:
                logger.info(f"Dedupe: hit on {source} key ({redirect.days_remaining} days remaining)")
                return DedupeHit(source=source, redirect=redirect)
        return None

    async def store(self, keys: DedupeKeys, redirect: Redirect) -> int:
        """Write the envelope to every non-empty key. Returns how many writes landed."""
        targets = keys.ordered()
        if not targets:
            return 0
        last_upload = utc_now_iso()
        stored = redirect.model_copy(update={"last_upload": last_upload, "days_remaining": DEDUPE_TTL_DAYS})
        payload = json.dumps({"redirect": stored.to_wire(), "lastUpload": last_upload})

        results = await asyncio.gather(
            *(self.kv.set(key, payload, ex=DEDUPE_TTL) for _, key in targets),
            return_exceptions=True,
        )
        written = 0
        for (source, _), outcome in zip(targets, results):
            if isinstance(outcome, BaseException):
                logger.warning(f"Dedupe: {source} write failed: {outcome}")
            else:
                written += 1
        return written

    async def lookup_by_ref(self, ref_id: str) -> Redirect | None:
        if not ref_id or not ref_id.strip():
            return None
        return await self._read(self.keys.ref(ref_id.strip()))
