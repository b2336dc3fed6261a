"""Error taxonomy shared by the HTTP layer and the processor."""

from enum import Enum


class ErrorCode(str, Enum):
    # protocol / admission
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    INVALID_JSON = "INVALID_JSON"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMAIL_REQUIRED = "EMAIL_REQUIRED"
    CONCURRENT_UPLOAD = "CONCURRENT_UPLOAD"
    RATE_LIMITED = "RATE_LIMITED"
    UNAUTHORIZED = "UNAUTHORIZED"
    # job lifecycle
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_JOB_ID = "INVALID_JOB_ID"
    MAX_FILES_EXCEEDED = "MAX_FILES_EXCEEDED"
    NO_FILES = "NO_FILES"
    # payload shape
    PDF_TOO_SMALL = "PDF_TOO_SMALL"
    INVALID_PDF = "INVALID_PDF"
    DUPLICATE_BUREAU = "DUPLICATE_BUREAU"
    PARSE_FAILED = "PARSE_FAILED"
    # identity gate
    IDENTITY_MISMATCH = "IDENTITY_MISMATCH"
    REPORT_TOO_OLD = "REPORT_TOO_OLD"
    TIMEOUT = "TIMEOUT"
    # infrastructure
    JOB_CREATE_FAILED = "JOB_CREATE_FAILED"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    PROCESSING_INIT_FAILED = "PROCESSING_INIT_FAILED"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.METHOD_NOT_ALLOWED: "Method not allowed.",
    ErrorCode.INVALID_JSON: "Request body is not valid JSON.",
    ErrorCode.VALIDATION_ERROR: "Request failed validation.",
    ErrorCode.EMAIL_REQUIRED: "Email is required.",
    ErrorCode.CONCURRENT_UPLOAD: "Another upload for this email is already starting. Please wait a moment and try again.",
    ErrorCode.RATE_LIMITED: "Too many requests. Please slow down.",
    ErrorCode.UNAUTHORIZED: "Unauthorized.",
    ErrorCode.JOB_NOT_FOUND: "Job not found or expired.",
    ErrorCode.INVALID_JOB_ID: "Invalid job ID.",
    ErrorCode.MAX_FILES_EXCEEDED: "Maximum of 3 files per upload.",
    ErrorCode.NO_FILES: "No files have been uploaded for this job.",
    ErrorCode.PDF_TOO_SMALL: "This file is too small to be a full credit report. Please upload the complete PDF.",
    ErrorCode.INVALID_PDF: "This doesn't appear to be a valid credit report PDF. Please upload an Experian, Equifax, or TransUnion report.",
    ErrorCode.DUPLICATE_BUREAU: "More than one report was uploaded for the same bureau.",
    ErrorCode.PARSE_FAILED: "We couldn't read this credit report. Please try again.",
    ErrorCode.IDENTITY_MISMATCH: "The name on this credit report doesn't match the name you entered.",
    ErrorCode.REPORT_TOO_OLD: "This credit report is too old. Please upload a report from the last 30 days.",
    ErrorCode.TIMEOUT: "Processing took too long. Please try again.",
    ErrorCode.JOB_CREATE_FAILED: "Could not start your upload. Please try again.",
    ErrorCode.SYSTEM_ERROR: "Something went wrong. Please try again.",
    ErrorCode.UPLOAD_FAILED: "Upload failed. Please try again.",
    ErrorCode.PROCESSING_INIT_FAILED: "Could not start processing. Please try again.",
}


def default_message(code: ErrorCode) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.SYSTEM_ERROR])


class ApiError(Exception):
    """Business or protocol failure raised by a route, rendered as {ok:false, error, code}.

    Business failures keep HTTP 200 so browser clients can branch on ``code``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        http_status: int = 200,
        extra: dict | None = None,
    ) -> None:
        self.code = code
        self.message = message or default_message(code)
        self.http_status = http_status
        self.extra = extra or {}
        super().__init__(self.message)


class ProcessingError(Exception):
    """A classified failure inside the processor. ``user_message`` is what the poller sees."""

    def __init__(self, message: str, code: ErrorCode, user_message: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.user_message = user_message or default_message(code)


class UpstreamError(Exception):
    """Transport or HTTP failure talking to an upstream service.

    ``status_code`` is None for transport errors (connect, read timeout).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_outage(self) -> bool:
        return self.status_code is None or self.status_code >= 500
