"""Langfuse prompt management + tracing client.

Fetches versioned prompts from Langfuse at runtime. Returns None when Langfuse
is not configured or unavailable so callers fall back to the embedded prompt.

Exports:
- observe: decorator for tracing functions
- get_prompt_messages: compiled (system, user, config) for a chat prompt
- flush: flush pending traces at the end of a worker tick

Env vars: LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY, LANGFUSE_HOST
"""

import threading

from langfuse import Langfuse, observe  # noqa: F401

from underwriteiq.config import load_settings
from underwriteiq.core.logger import logger

_client: Langfuse | None = None
_initialized = False
_lock = threading.Lock()


def _get_client() -> Langfuse | None:
    """Get or create the Langfuse client singleton. Returns None if not configured."""
    global _client, _initialized

    if _initialized:
        return _client

    with _lock:
        if _initialized:
            return _client

        _initialized = True
        settings = load_settings()

        if not settings.langfuse_public_key or not settings.langfuse_secret_key:
            logger.info("Langfuse: no keys configured, using embedded prompts")
            return None

        try:
            _client = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host,
            )
            logger.info("Langfuse: client initialized")
        except (ValueError, TypeError, RuntimeError) as e:
            logger.warning(f"Langfuse: failed to initialize client: {e}")
            _client = None
        return _client


def get_prompt_messages(
    prompt_name: str,
    variables: dict,
) -> tuple[str, str, dict] | None:
    """Fetch a chat prompt from Langfuse, compile with variables.

    Returns:
        (system_content, user_content, config_dict) or None if unavailable.
    """
    client = _get_client()
    if not client:
        return None

    try:
        prompt = client.get_prompt(prompt_name, type="chat", cache_ttl_seconds=300)
        messages = prompt.compile(**variables)
    except (ValueError, KeyError, TypeError, RuntimeError) as e:
        logger.warning(f"Langfuse: failed to fetch prompt '{prompt_name}': {e}")
        return None

    system_content = ""
    user_content = ""
    for msg in messages:
        if msg.get("role") == "system":
            system_content = msg.get("content", "")
        elif msg.get("role") == "user":
            user_content = msg.get("content", "")

    logger.debug(f"Langfuse: fetched prompt '{prompt_name}' (v{prompt.version})")
    return system_content, user_content, prompt.config or {}


def flush() -> None:
    """Flush pending Langfuse traces."""
    client = _get_client()
    if not client:
        return
    try:
        client.flush()
        logger.debug("Langfuse: traces flushed")
    except (OSError, RuntimeError) as e:
        logger.warning(f"Langfuse: flush failed: {e}")
