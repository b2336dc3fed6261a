"""Central LLM client for PDF extraction.

All calls are async. Singleton via asyncio.Lock.
OpenAI calls go through Langfuse's drop-in client so every call is traced.
Transient transport failures are retried once via tenacity; everything else
surfaces as UpstreamError so the circuit breaker can classify it.
"""

import asyncio
import base64
import json

import httpx
import openai as openai_errors
from langfuse.openai import AsyncOpenAI
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from underwriteiq.config import load_settings
from underwriteiq.core.errors import UpstreamError
from underwriteiq.core.logger import logger

# Transient errors worth retrying
_RETRYABLE = (httpx.TimeoutException, httpx.ConnectError, openai_errors.APIConnectionError)


class LLMClient:
    def __init__(self):
        settings = load_settings()
        self.openai_client = (
            AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.openai_timeout_seconds,
                max_retries=0,
            )
            if settings.openai_api_key
            else None
        )
        self.model = settings.llm_model

    async def extract_pdf_json(
        self,
        pdf_bytes: bytes,
        filename: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 4000,
        name: str | None = None,
    ) -> dict | None:
        """Send a PDF to the model and return its JSON answer.

        Returns None when the model answers with something that is not a JSON object.
        Raises UpstreamError on transport or HTTP failures.
        """
        if not self.openai_client:
            raise UpstreamError("OpenAI API key not configured", status_code=None)

        try:
            content = await self._call_openai_file(
                pdf_bytes, filename, system_prompt, user_prompt, temperature, max_tokens, name=name
            )
        except openai_errors.APIStatusError as e:
            logger.warning(f"OpenAI returned HTTP {e.status_code}: {e.message}")
            raise UpstreamError(f"OpenAI HTTP {e.status_code}", status_code=e.status_code) from e
        except (openai_errors.APIConnectionError, httpx.HTTPError) as e:
            logger.warning(f"OpenAI transport failure: {e}")
            raise UpstreamError(f"OpenAI transport failure: {e}") from e

        try:
            parsed = json.loads(content or "")
        except json.JSONDecodeError as e:
            logger.error(f"LLM returned invalid JSON: {e}\nContent: {(content or '')[:200]}")
            return None
        return parsed if isinstance(parsed, dict) else None

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(_RETRYABLE),
        reraise=True,
    )
    async def _call_openai_file(
        self,
        pdf_bytes: bytes,
        filename: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        name: str | None = None,
    ) -> str:
        encoded = base64.b64encode(pdf_bytes).decode()
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({
            "role": "user",
            "content": [
                {
                    "type": "file",
                    "file": {
                        "filename": filename,
                        "file_data": f"data:application/pdf;base64,{encoded}",
                    },
                },
                {"type": "text", "text": user_prompt},
            ],
        })

        kwargs = dict(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        if name:
            kwargs["name"] = name

        response = await self.openai_client.chat.completions.create(**kwargs)

        if not response.choices:
            raise UpstreamError("LLM returned no choices", status_code=502)

        return response.choices[0].message.content


_client: LLMClient | None = None
_lock = asyncio.Lock()


async def get_llm_client() -> LLMClient:
    """Get or create the singleton LLM client."""
    global _client
    if _client is None:
        async with _lock:
            if _client is None:
                _client = LLMClient()
    return _client
