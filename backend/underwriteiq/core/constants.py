"""Centralized constants. Service code should not carry magic numbers."""

# Upload limits
MAX_FILES_PER_JOB = 3
MAX_FILE_SIZE = 30 * 1024 * 1024  # 30 MiB, enforced by the blob client token
MIN_PDF_BYTES = 40 * 1024  # real bureau reports are never this small
ALLOWED_CONTENT_TYPES = ["application/pdf"]
CLIENT_TOKEN_VALIDITY = 60 * 60  # seconds

# Job record TTLs (seconds), re-applied on every write
STATUS_TTLS = {
    "pending": 5 * 60,
    "queued": 10 * 60,
    "processing": 10 * 60,
    "complete": 60 * 60,
    "error": 30 * 60,
}

# Locks + caches
UPLOAD_LOCK_TTL = 30  # seconds
DEDUPE_TTL_DAYS = 30
DEDUPE_TTL = DEDUPE_TTL_DAYS * 24 * 60 * 60
PARSE_CACHE_TTL = 24 * 60 * 60

# Worker
MAX_JOBS_PER_TICK = 2
WORKER_TIMEOUT = 55  # seconds per cron tick
PROCESSING_TIMEOUT = 5 * 60  # outer deadline for one job
ESTIMATED_SECONDS_PER_JOB = 30

# LLM + circuit breaker
DEFAULT_LLM_MODEL = "gpt-4o-mini"
BREAKER_FAILURE_THRESHOLD = 3
BREAKER_COOLDOWN = 30  # seconds
PARSE_PROMPT_NAME = "credit-report-extract"

# Outbound HTTP
DEFAULT_HTTP_TIMEOUT = 30  # seconds (blob, CRM)

# Identity gate
MAX_REPORT_AGE_DAYS = 30

# Letters
PDFLATEX_TIMEOUT = 30  # seconds per pdflatex pass

# Rate limiting
RATE_LIMIT_PER_MINUTE = 10

BUREAUS = ("experian", "equifax", "transunion")

# Job progress phrases (surfaced by /job-status)
PROGRESS_CREATED = "Waiting for upload..."
PROGRESS_UPLOADED = "Upload complete. Starting processing..."
PROGRESS_QUEUED = "Queued for processing..."
PROGRESS_DOWNLOADING = "Downloading file..."
PROGRESS_PARSING = "Analyzing credit report..."
PROGRESS_VALIDATING = "Validating report..."
PROGRESS_UNDERWRITING = "Running analysis..."
PROGRESS_SIDE_EFFECTS = "Updating your profile..."
PROGRESS_COMPLETE = "Complete"
PROGRESS_FAILED = "Failed"
