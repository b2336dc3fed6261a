"""UnderwriteIQ Lite API: async credit-report upload and processing pipeline.

Run: uvicorn underwriteiq.main:app --reload --port 8001
Docs: http://localhost:8001/docs
"""

import math
import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from dotenv import load_dotenv
from slowapi.errors import RateLimitExceeded

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from underwriteiq.config import load_settings  # noqa: E402
from underwriteiq.core.errors import ApiError, ErrorCode, default_message  # noqa: E402
from underwriteiq.core.logger import logger  # noqa: E402
from underwriteiq.deps import close_services, get_services  # noqa: E402
from underwriteiq.middleware import RequestIdMiddleware, request_id_var  # noqa: E402
from underwriteiq.rate_limit import limiter  # noqa: E402
from underwriteiq.routes import blob_upload, health, job_status, processing, upload_token  # noqa: E402
from underwriteiq.services.letters import drain_background_tasks  # noqa: E402

settings = load_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_required()
    missing = settings.missing_recommended()
    if missing:
        logger.warning(f"Config: recommended variables not set: {', '.join(missing)}")
    get_services()
    yield
    await drain_background_tasks(timeout=30)
    await close_services()


app = FastAPI(
    title="UnderwriteIQ Lite API",
    version="1.0.0",
    description="Uploads credit-report PDFs, queues them, and turns them into a funding verdict.",
    lifespan=lifespan,
)

app.state.limiter = limiter

ALLOWED_ORIGINS = settings.allowed_origins.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

# Request ID middleware (runs after CORS, before route handlers)
app.add_middleware(RequestIdMiddleware)


# ── Global exception handlers ────────────────────────────────────────


def _error_body(code: ErrorCode, message: str | None = None, **extra) -> dict:
    return {
        "ok": False,
        "error": message or default_message(code),
        "code": code.value,
        **extra,
        "request_id": request_id_var.get("-"),
    }


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.http_status, content=_error_body(exc.code, exc.message, **exc.extra))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    retry_after = 60
    limit = getattr(exc, "limit", None)
    if limit is not None:
        retry_after = max(1, math.ceil(limit.limit.get_expiry()))
    logger.warning(f"Rate limit hit on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content=_error_body(ErrorCode.RATE_LIMITED),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    if exc.status_code == 405:
        return JSONResponse(status_code=405, content=_error_body(ErrorCode.METHOD_NOT_ALLOWED))
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail, "request_id": request_id_var.get("-")},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        return JSONResponse(status_code=400, content=_error_body(ErrorCode.INVALID_JSON))
    first = errors[0] if errors else {}
    return JSONResponse(content=_error_body(ErrorCode.VALIDATION_ERROR, first.get("msg")))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = request_id_var.get("-")
    logger.error(f"Unhandled exception [{rid}]: {exc}\n{traceback.format_exc()}")
    return JSONResponse(status_code=500, content=_error_body(ErrorCode.SYSTEM_ERROR))


app.include_router(health.router)
app.include_router(upload_token.router)
app.include_router(blob_upload.router)
app.include_router(processing.router)
app.include_router(job_status.router)
