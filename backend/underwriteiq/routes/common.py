"""Request helpers shared by the JSON routes."""

import json
import re
from typing import TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

from underwriteiq.core.constants import ESTIMATED_SECONDS_PER_JOB
from underwriteiq.core.errors import ApiError, ErrorCode

JOB_ID_RE = re.compile(r"job_[a-z0-9]+", re.IGNORECASE)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_json(raw: bytes) -> dict:
    """Decode a JSON object body. Raises ApiError (400 INVALID_JSON) otherwise."""
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ApiError(ErrorCode.INVALID_JSON, http_status=400) from e
    if not isinstance(data, dict):
        raise ApiError(ErrorCode.INVALID_JSON, "Request body must be a JSON object.", http_status=400)
    return data


def validate_body(data: dict, model: type[ModelT]) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
        raise ApiError(ErrorCode.VALIDATION_ERROR, message) from e


async def read_json(request: Request, model: type[ModelT]) -> ModelT:
    return validate_body(parse_json(await request.body()), model)


def is_valid_job_id(job_id: str | None) -> bool:
    return bool(job_id) and bool(JOB_ID_RE.fullmatch(job_id))


def estimated_wait(position: int) -> str:
    return f"~{position * ESTIMATED_SECONDS_PER_JOB} seconds"
