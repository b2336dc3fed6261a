"""Middleware: request ID tagging and access logging.

Pure ASGI (not BaseHTTPMiddleware) so the request ID ContextVar is set in the
same context the route handlers and exception handlers run in.
"""

import time
import uuid
from contextvars import ContextVar

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

# Polling endpoints are hit every few seconds per client; keep them out of INFO.
_QUIET_PATHS = ("/job-status", "/health")


class RequestIdMiddleware:
    """Attach an 8-char request ID to every request/response cycle and log it."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        from underwriteiq.core.logger import logger

        rid = uuid.uuid4().hex[:8]
        request_id_var.set(rid)
        scope.setdefault("state", {})["request_id"] = rid
        started = time.monotonic()
        status_code = 500

        async def send_with_rid(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers.append("X-Request-ID", rid)
            await send(message)

        try:
            await self.app(scope, receive, send_with_rid)
        finally:
            elapsed_ms = round((time.monotonic() - started) * 1000)
            path = scope.get("path", "")
            line = f"{scope.get('method', '-')} {path} -> {status_code} ({elapsed_ms}ms)"
            if path.startswith(_QUIET_PATHS):
                logger.debug(line)
            else:
                logger.info(line)
