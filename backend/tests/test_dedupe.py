"""Tests for the dedupe index: key derivation, lookup order, TTL and days remaining."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from underwriteiq.core.constants import DEDUPE_TTL
from underwriteiq.models import Redirect
from underwriteiq.services.dedupe import (
    DedupeIndex,
    build_dedupe_keys,
    compute_days_remaining,
    user_fingerprint,
)


def _redirect(**overrides) -> Redirect:
    fields = {
        "path": "funding",
        "result_url": "https://fundhub.ai/approved?score=720",
        "ref_id": "ref-abc123",
        "last_upload": "2026-01-01T00:00:00Z",
        "days_remaining": 30,
    }
    fields.update(overrides)
    return Redirect(**fields)


# ===========================================================================
# Key derivation
# ===========================================================================


class TestDedupeKeys:
    def test_user_key_needs_email_and_phone(self, keys):
        assert build_dedupe_keys(keys, email="a@b.com").user is None
        assert build_dedupe_keys(keys, phone="555-1234").user is None
        assert build_dedupe_keys(keys, email="a@b.com", phone="555-1234").user is not None

    def test_fingerprint_normalizes_email_and_phone(self):
        assert user_fingerprint(" A@B.com ", "(555) 123-4567") == user_fingerprint("a@b.com", "5551234567")

    def test_phone_without_digits_gives_no_user_key(self, keys):
        assert build_dedupe_keys(keys, email="a@b.com", phone="n/a").user is None

    def test_device_and_ref_keys_are_namespaced(self, keys):
        dk = build_dedupe_keys(keys, device_id="dev-1", ref_id="ref-9")
        assert dk.device == "test:d:dev-1"
        assert dk.ref == "test:r:ref-9"

    def test_ordered_skips_empty_keys(self, keys):
        dk = build_dedupe_keys(keys, device_id="dev-1")
        assert [source for source, _ in dk.ordered()] == ["device"]


class TestDaysRemaining:
    def test_fresh_upload_has_full_window(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert compute_days_remaining("2026-03-01T00:00:00Z", now) == 30

    def test_counts_down(self):
        now = datetime(2026, 3, 11, 12, tzinfo=timezone.utc)
        assert compute_days_remaining("2026-03-01T00:00:00Z", now) == 20

    def test_never_negative(self):
        now = datetime(2026, 6, 1, tzinfo=timezone.utc)
        assert compute_days_remaining("2026-03-01T00:00:00Z", now) == 0

    def test_unparseable_date_is_zero(self):
        assert compute_days_remaining("yesterday") == 0


# ===========================================================================
# DedupeIndex
# ===========================================================================


@pytest.mark.asyncio
class TestDedupeIndex:
    async def test_store_then_check_hits_user_first(self, kv, keys):
        index = DedupeIndex(kv, keys)
        dk = index.keys_for(email="a@b.com", phone="5551234567", device_id="dev-1", ref_id="ref-1")
        written = await index.store(dk, _redirect())
        assert written == 3

        hit = await index.check(dk)
        assert hit.source == "user"
        assert hit.redirect.path == "funding"

    async def test_device_hit_when_user_unknown(self, kv, keys):
        index = DedupeIndex(kv, keys)
        await index.store(index.keys_for(device_id="dev-1"), _redirect())
        hit = await index.check(index.keys_for(email="new@b.com", phone="5550000000", device_id="dev-1"))
        assert hit.source == "device"

    async def test_miss_returns_none(self, kv, keys):
        index = DedupeIndex(kv, keys)
        assert await index.check(index.keys_for(email="a@b.com", phone="5551234567")) is None

    async def test_empty_keys_never_hit(self, kv, keys):
        index = DedupeIndex(kv, keys)
        assert await index.check(index.keys_for()) is None
        assert await index.store(index.keys_for(), _redirect()) == 0

    async def test_entries_carry_thirty_day_ttl(self, kv, keys):
        index = DedupeIndex(kv, keys)
        dk = index.keys_for(ref_id="ref-1")
        await index.store(dk, _redirect())
        assert await kv.ttl(dk.ref) == DEDUPE_TTL

    async def test_entries_expire(self, kv, keys, clock):
        index = DedupeIndex(kv, keys)
        dk = index.keys_for(ref_id="ref-1")
        await index.store(dk, _redirect())
        clock.advance(DEDUPE_TTL + 1)
        assert await index.check(dk) is None

    async def test_read_refreshes_days_remaining(self, kv, keys):
        later = datetime.now(timezone.utc) + timedelta(days=10, hours=1)
        index = DedupeIndex(kv, keys, clock=lambda: later)
        dk = index.keys_for(ref_id="ref-1")
        await index.store(dk, _redirect())
        hit = await index.check(dk)
        assert hit.redirect.days_remaining == 20

    async def test_envelope_shape(self, kv, keys):
        index = DedupeIndex(kv, keys)
        dk = index.keys_for(ref_id="ref-1")
        await index.store(dk, _redirect())
        record = json.loads(await kv.get(dk.ref))
        assert set(record) == {"redirect", "lastUpload"}
        assert record["redirect"]["resultUrl"].startswith("https://fundhub.ai/approved")

    async def test_lookup_by_ref(self, kv, keys):
        index = DedupeIndex(kv, keys)
        await index.store(index.keys_for(ref_id="ref-1"), _redirect())
        redirect = await index.lookup_by_ref("ref-1")
        assert redirect.ref_id == "ref-abc123"
        assert await index.lookup_by_ref("ref-unknown") is None
        assert await index.lookup_by_ref("  ") is None

    async def test_kv_read_failure_is_a_miss(self, keys):
        kv = AsyncMock()
        kv.get = AsyncMock(side_effect=RedisConnectionError("down"))
        index = DedupeIndex(kv, keys)
        assert await index.check(index.keys_for(device_id="dev-1")) is None

    async def test_partial_write_failure_counts_landed_writes(self, keys):
        kv = AsyncMock()
        kv.set = AsyncMock(side_effect=[True, RedisConnectionError("down")])
        index = DedupeIndex(kv, keys)
        written = await index.store(index.keys_for(device_id="dev-1", ref_id="ref-1"), _redirect())
        assert written == 1
