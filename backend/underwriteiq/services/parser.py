"""Credit report parsing: LLM extraction behind a parse cache and circuit breaker.

Fetches prompt from Langfuse ("credit-report-extract") at runtime.
Prompt managed in Langfuse, push via scripts/push_prompts.py.
"""

import asyncio
import hashlib
import json

from pydantic import ValidationError
from redis.exceptions import RedisError

from underwriteiq.core.circuit_breaker import CircuitBreaker
from underwriteiq.core.constants import BUREAUS, PARSE_CACHE_TTL, PARSE_PROMPT_NAME
from underwriteiq.core.errors import ErrorCode, ProcessingError, UpstreamError
from underwriteiq.core.kv import KeySpace
from underwriteiq.core.langfuse_client import get_prompt_messages, observe
from underwriteiq.core.llm import get_llm_client
from underwriteiq.core.logger import logger
from underwriteiq.models import Bureaus, ParserResult

UNREADABLE_REASON = (
    "We couldn't read this credit report. Please upload the full PDF downloaded "
    "from Experian, Equifax, TransUnion or a tri-merge provider."
)
OUTAGE_REASON = "Our report analyzer is having trouble right now. Please try again in a few minutes."
TIMEOUT_REASON = "Analyzing your report took too long. Please try again."


def normalize_bureaus(raw: dict) -> Bureaus | None:
    """Pull the per-bureau slots out of the model's answer. None when it has no usable shape."""
    slots = raw.get("bureaus", raw) if isinstance(raw, dict) else None
    if not isinstance(slots, dict):
        return None
    lowered = {str(k).strip().lower(): v for k, v in slots.items()}
    try:
        return Bureaus.model_validate({name: lowered.get(name) for name in BUREAUS})
    except ValidationError as e:
        logger.warning(f"Parser: bureau payload failed validation: {e}")
        return None


def merge_bureaus(results: list[Bureaus]) -> Bureaus:
    """Merge per-file parse results into one tri-merge view.

    Raises ProcessingError(DUPLICATE_BUREAU) when two files carry the same
    bureau, and INVALID_PDF when no file carries any.
    """
    merged: dict[str, object] = {}
    for bureaus in results:
        for name in bureaus.present():
            if name in merged:
                raise ProcessingError(
                    f"bureau {name} present in more than one file",
                    ErrorCode.DUPLICATE_BUREAU,
                    f"More than one uploaded report contains {name.title()} data. "
                    "Please upload one report per bureau.",
                )
            merged[name] = getattr(bureaus, name)
    if not merged:
        raise ProcessingError("no bureau sections found", ErrorCode.INVALID_PDF)
    return Bureaus(**merged)


class ReportParser:
    """Single LLM call: PDF in, per-bureau JSON out."""

    @observe(name="credit-report-extract")
    async def parse(self, pdf_bytes: bytes, filename: str) -> ParserResult:
        template_vars = {"filename": filename}
        default_config = {"temperature": 0.0, "max_tokens": 6000}

        langfuse_result = get_prompt_messages(PARSE_PROMPT_NAME, template_vars)
        if langfuse_result:
            system_prompt, user_prompt, config = langfuse_result
            config = config or default_config
        else:
            from underwriteiq.core.fallback_prompts import FALLBACK_PROMPTS
            fb = FALLBACK_PROMPTS[PARSE_PROMPT_NAME]
            system_prompt = fb["system"]
            user_prompt = fb["user"].format(**template_vars)
            config = fb["config"]
            logger.warning(f"Langfuse unavailable, using embedded fallback for {PARSE_PROMPT_NAME}")

        llm = await get_llm_client()
        raw = await llm.extract_pdf_json(
            pdf_bytes,
            filename,
            system_prompt,
            user_prompt,
            temperature=config.get("temperature", 0.0),
            max_tokens=config.get("max_tokens", 6000),
            name=PARSE_PROMPT_NAME,
        )
        if raw is None:
            return ParserResult(ok=False, reason=UNREADABLE_REASON, code=ErrorCode.PARSE_FAILED)

        bureaus = normalize_bureaus(raw)
        if bureaus is None:
            return ParserResult(ok=False, reason=UNREADABLE_REASON, code=ErrorCode.PARSE_FAILED)

        logger.info(f"Parser: extracted bureaus {bureaus.present() or 'none'}")
        return ParserResult(ok=True, bureaus=bureaus)


class ParseGateway:
    """Parse cache, then circuit breaker, then the parser under a timeout."""

    def __init__(
        self,
        parser: ReportParser,
        kv,
        keys: KeySpace,
        breaker: CircuitBreaker,
        timeout: float,
    ) -> None:
        self.parser = parser
        self.kv = kv
        self.keys = keys
        self.breaker = breaker
        self.timeout = timeout

    async def _cached(self, digest: str) -> ParserResult | None:
        try:
            raw = await self.kv.get(self.keys.parse_cache(digest))
        except (RedisError, OSError) as e:
            logger.warning(f"Parse cache read failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return ParserResult.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Parse cache entry corrupt, ignoring: {e}")
            return None

    async def _remember(self, digest: str, result: ParserResult) -> None:
        try:
            await self.kv.set(
                self.keys.parse_cache(digest),
                result.model_dump_json(by_alias=True),
                ex=PARSE_CACHE_TTL,
            )
        except (RedisError, OSError) as e:
            logger.warning(f"Parse cache write failed: {e}")

    async def parse(self, pdf_bytes: bytes, filename: str) -> ParserResult:
        digest = hashlib.sha256(pdf_bytes).hexdigest()
        cached = await self._cached(digest)
        if cached is not None:
            logger.info(f"Parse cache HIT (hash={digest[:8]}...)")
            return cached

        decision = self.breaker.before()
        if not decision.allowed:
            logger.warning(f"Parser call short-circuited: breaker {self.breaker.state.value}")
            return ParserResult(ok=False, reason=decision.reason, code=ErrorCode.PARSE_FAILED)

        try:
            result = await asyncio.wait_for(self.parser.parse(pdf_bytes, filename), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.breaker.on_failure()
            logger.warning(f"Parser timed out after {self.timeout}s")
            return ParserResult(ok=False, reason=TIMEOUT_REASON, code=ErrorCode.TIMEOUT)
        except UpstreamError as e:
            if e.is_outage:
                self.breaker.on_failure()
            else:
                self.breaker.release()
            logger.warning(f"Parser upstream failure (status={e.status_code}): {e}")
            reason = OUTAGE_REASON if e.is_outage else UNREADABLE_REASON
            return ParserResult(ok=False, reason=reason, code=ErrorCode.PARSE_FAILED)
        except BaseException:
            # Cancelled by the job deadline, or an unexpected error: free the half-open slot.
            self.breaker.release()
            raise

        self.breaker.on_success()
        if result.ok:
            await self._remember(digest, result)
        return result
