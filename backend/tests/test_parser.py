"""Tests for report parsing: bureau normalization, merging, and the parse gateway.

The LLM is mocked throughout; the gateway tests exercise cache, breaker and
timeout behaviour around a fake parser.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from underwriteiq.core.circuit_breaker import BreakerState, CircuitBreaker
from underwriteiq.core.constants import PARSE_CACHE_TTL
from underwriteiq.core.errors import ErrorCode, ProcessingError, UpstreamError
from underwriteiq.models import Bureaus, ParserResult
from underwriteiq.services.parser import (
    OUTAGE_REASON,
    ParseGateway,
    ReportParser,
    merge_bureaus,
    normalize_bureaus,
)


# ===========================================================================
# normalize_bureaus / merge_bureaus
# ===========================================================================


class TestNormalizeBureaus:
    def test_reads_nested_bureaus_key(self, make_bureau):
        bureaus = normalize_bureaus({"bureaus": {"Experian": make_bureau(score="745")}})
        assert bureaus.present() == ["experian"]
        assert bureaus.experian.score == 745

    def test_string_numbers_and_nulls_are_coerced(self, make_bureau):
        bureaus = normalize_bureaus({"transunion": make_bureau(score="null", util="31%")})
        assert bureaus.transunion.score is None
        assert bureaus.transunion.utilization_pct == 31

    def test_non_dict_slots_are_absent(self):
        bureaus = normalize_bureaus({"experian": "not available", "equifax": None})
        assert bureaus.present() == []

    def test_garbage_returns_none(self):
        assert normalize_bureaus({"bureaus": ["experian"]}) is None


class TestMergeBureaus:
    def test_merges_disjoint_results(self, make_bureau):
        a = Bureaus.model_validate({"experian": make_bureau()})
        b = Bureaus.model_validate({"equifax": make_bureau(score=700)})
        merged = merge_bureaus([a, b])
        assert merged.present() == ["experian", "equifax"]

    def test_duplicate_bureau_rejected(self, make_bureau):
        a = Bureaus.model_validate({"experian": make_bureau()})
        b = Bureaus.model_validate({"experian": make_bureau(score=650)})
        with pytest.raises(ProcessingError) as exc_info:
            merge_bureaus([a, b])
        assert exc_info.value.code == ErrorCode.DUPLICATE_BUREAU

    def test_no_bureaus_is_invalid_pdf(self):
        with pytest.raises(ProcessingError) as exc_info:
            merge_bureaus([Bureaus()])
        assert exc_info.value.code == ErrorCode.INVALID_PDF


# ===========================================================================
# ReportParser (LLM mocked)
# ===========================================================================


@pytest.mark.asyncio
class TestReportParser:
    async def test_uses_fallback_prompt_and_normalizes(self, make_bureau):
        mock_llm = AsyncMock()
        mock_llm.extract_pdf_json = AsyncMock(return_value={"bureaus": {"experian": make_bureau()}})
        with patch("underwriteiq.services.parser.get_llm_client", AsyncMock(return_value=mock_llm)), \
             patch("underwriteiq.services.parser.get_prompt_messages", return_value=None):
            result = await ReportParser().parse(b"%PDF", "report.pdf")

        assert result.ok is True
        assert result.bureaus.present() == ["experian"]
        args = mock_llm.extract_pdf_json.call_args
        assert "report.pdf" in args.args[3]

    async def test_invalid_json_is_parse_failed(self):
        mock_llm = AsyncMock()
        mock_llm.extract_pdf_json = AsyncMock(return_value=None)
        with patch("underwriteiq.services.parser.get_llm_client", AsyncMock(return_value=mock_llm)), \
             patch("underwriteiq.services.parser.get_prompt_messages", return_value=("sys", "user", {})):
            result = await ReportParser().parse(b"%PDF", "report.pdf")
        assert result.ok is False
        assert result.code == ErrorCode.PARSE_FAILED


# ===========================================================================
# ParseGateway
# ===========================================================================


def _gateway(kv, keys, clock, parse_mock, timeout=5.0) -> ParseGateway:
    parser = MagicMock()
    parser.parse = parse_mock
    breaker = CircuitBreaker("test", failure_threshold=3, cooldown=30, clock=clock)
    return ParseGateway(parser, kv, keys, breaker, timeout=timeout)


@pytest.mark.asyncio
class TestParseGateway:
    async def test_success_is_cached_by_content_hash(self, kv, keys, clock, make_bureau):
        ok = ParserResult.model_validate({"ok": True, "bureaus": {"experian": make_bureau()}})
        parse = AsyncMock(return_value=ok)
        gateway = _gateway(kv, keys, clock, parse)

        first = await gateway.parse(b"same-bytes", "a.pdf")
        second = await gateway.parse(b"same-bytes", "b.pdf")

        assert first.ok and second.ok
        assert second.bureaus.experian.report_date == first.bureaus.experian.report_date
        parse.assert_awaited_once()

    async def test_failures_are_not_cached(self, kv, keys, clock):
        parse = AsyncMock(return_value=ParserResult(ok=False, reason="x", code=ErrorCode.PARSE_FAILED))
        gateway = _gateway(kv, keys, clock, parse)
        await gateway.parse(b"bytes", "a.pdf")
        await gateway.parse(b"bytes", "a.pdf")
        assert parse.await_count == 2

    async def test_outages_open_breaker_then_short_circuit(self, kv, keys, clock):
        parse = AsyncMock(side_effect=UpstreamError("503", status_code=503))
        gateway = _gateway(kv, keys, clock, parse)

        for i in range(3):
            result = await gateway.parse(f"bytes-{i}".encode(), "a.pdf")
            assert result.code == ErrorCode.PARSE_FAILED
            assert result.reason == OUTAGE_REASON
        assert gateway.breaker.state == BreakerState.OPEN

        result = await gateway.parse(b"bytes-4", "a.pdf")
        assert result.ok is False
        assert "temporarily unavailable" in result.reason
        assert parse.await_count == 3

    async def test_client_errors_do_not_trip_breaker(self, kv, keys, clock):
        parse = AsyncMock(side_effect=UpstreamError("400", status_code=400))
        gateway = _gateway(kv, keys, clock, parse)
        for i in range(5):
            result = await gateway.parse(f"bytes-{i}".encode(), "a.pdf")
            assert result.code == ErrorCode.PARSE_FAILED
        assert gateway.breaker.state == BreakerState.CLOSED

    async def test_transport_errors_count_as_outage(self, kv, keys, clock):
        parse = AsyncMock(side_effect=UpstreamError("connect failed"))
        gateway = _gateway(kv, keys, clock, parse)
        await gateway.parse(b"bytes", "a.pdf")
        assert gateway.breaker.failures == 1

    async def test_timeout_surfaces_as_timeout_code(self, kv, keys, clock):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        gateway = _gateway(kv, keys, clock, AsyncMock(side_effect=slow), timeout=0.01)
        result = await gateway.parse(b"bytes", "a.pdf")
        assert result.ok is False
        assert result.code == ErrorCode.TIMEOUT
        assert gateway.breaker.failures == 1

    async def test_cache_expires_after_ttl(self, kv, keys, clock, make_bureau):
        ok = ParserResult.model_validate({"ok": True, "bureaus": {"experian": make_bureau()}})
        parse = AsyncMock(return_value=ok)
        gateway = _gateway(kv, keys, clock, parse)

        await gateway.parse(b"same-bytes", "a.pdf")
        clock.advance(PARSE_CACHE_TTL - 1)
        await gateway.parse(b"same-bytes", "a.pdf")
        assert parse.await_count == 1

        clock.advance(2)
        await gateway.parse(b"same-bytes", "a.pdf")
        assert parse.await_count == 2

    async def test_cancelled_probe_frees_half_open_slot(self, kv, keys, clock, make_bureau):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        parse = AsyncMock(side_effect=slow)
        gateway = _gateway(kv, keys, clock, parse)
        for _ in range(3):
            gateway.breaker.on_failure()
        clock.advance(31)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(gateway.parse(b"probe", "a.pdf"), timeout=0.01)
        assert gateway.breaker.state == BreakerState.HALF_OPEN

        ok = ParserResult.model_validate({"ok": True, "bureaus": {"experian": make_bureau()}})
        parse.side_effect = None
        parse.return_value = ok
        result = await gateway.parse(b"next", "a.pdf")

        assert result.ok is True
        assert parse.await_count == 2
        assert gateway.breaker.state == BreakerState.CLOSED

    async def test_unexpected_error_frees_half_open_slot(self, kv, keys, clock):
        parse = AsyncMock(side_effect=KeyError("bureaus"))
        gateway = _gateway(kv, keys, clock, parse)
        for _ in range(3):
            gateway.breaker.on_failure()
        clock.advance(31)

        with pytest.raises(KeyError):
            await gateway.parse(b"probe", "a.pdf")

        assert gateway.breaker.before().allowed is True
