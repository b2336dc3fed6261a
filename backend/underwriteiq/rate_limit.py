"""slowapi limiter shared by the app and the routes it guards."""

from slowapi import Limiter
from starlette.requests import Request

from underwriteiq.config import load_settings


def client_identifier(request: Request) -> str:
    """Best available client identity behind CDNs and proxies."""
    headers = request.headers
    for header in ("cf-connecting-ip", "x-real-ip"):
        value = headers.get(header, "").strip()
        if value:
            return value
    forwarded = headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return f"ua:{headers.get('user-agent', 'unknown')}"


def upload_token_limit() -> str:
    return f"{load_settings().rate_limit_per_minute}/minute"


def _storage_uri() -> str:
    settings = load_settings()
    if settings.kv_backend.lower() == "redis" and settings.kv_url.startswith(("redis://", "rediss://")):
        return settings.kv_url
    return "memory://"


limiter = Limiter(
    key_func=client_identifier,
    storage_uri=_storage_uri(),
    enabled=load_settings().rate_limit_enabled,
)
