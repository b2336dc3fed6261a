"""Health check endpoint."""

import time

from fastapi import APIRouter

router = APIRouter(tags=["System"])

_start_time = time.monotonic()


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "underwriteiq-lite",
        "version": "1.0.0",
        "uptime_seconds": round(time.monotonic() - _start_time),
    }
