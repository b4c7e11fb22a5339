"""
Runtime configuration for the candidate mail intake service.

Everything is read once from the environment (a .env file is loaded when
present). Values here are plain module constants so services can import
exactly what they need and tests can patch individual settings.

Environment variables
---------------------
APP_ENV                     "production" enables strict TLS by default.
IMAP_VALIDATE_CERTIFICATES  Override certificate validation ("true"/"false").
IMAP_TIMEOUT_SECONDS        Socket timeout for mail-store calls (unset = none).
MAX_FETCH                   Max messages returned by a listing call.
MAX_PROCESS                 Max messages accepted by one batch import.
MAX_ATTACHMENT_SIZE         Max document size handed to text extraction.
RESUME_PARSER_MODEL         Anthropic model used for resume field extraction.
API_KEY                     Shared key required in the X-API-Key header.
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


APP_ENV = os.getenv("APP_ENV", "development")

# ---------------------------------------------------------------------------
# Mail store
# ---------------------------------------------------------------------------

# Fixed presets; "other" supplies its own host/port.
PROVIDER_PRESETS: dict[str, tuple[str, int]] = {
    "gmail": ("imap.gmail.com", 993),
    "outlook": ("outlook.office365.com", 993),
}

DEFAULT_MAILBOX = "INBOX"

# Certificates are only validated in production unless explicitly overridden.
IMAP_VALIDATE_CERTIFICATES = _env_bool(
    "IMAP_VALIDATE_CERTIFICATES", APP_ENV == "production"
)

IMAP_TIMEOUT_SECONDS: Optional[float] = _env_float("IMAP_TIMEOUT_SECONDS")

MAX_FETCH = int(os.getenv("MAX_FETCH", "50"))
MAX_PROCESS = int(os.getenv("MAX_PROCESS", "10"))

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

MAX_ATTACHMENT_SIZE = int(os.getenv("MAX_ATTACHMENT_SIZE", str(10 * 1024 * 1024)))

RESUME_EXTENSIONS = (".pdf", ".doc", ".docx", ".rtf", ".txt", ".odt")

JOB_KEYWORDS = (
    "job",
    "position",
    "candidate",
    "resume",
    "cv",
    "application",
    "apply",
    "applicant",
    "hire",
    "hiring",
    "recruitment",
)

# ---------------------------------------------------------------------------
# AI extraction
# ---------------------------------------------------------------------------

RESUME_PARSER_MODEL = os.getenv("RESUME_PARSER_MODEL", "claude-sonnet-4-5-20250929")
RESUME_PARSER_MAX_TOKENS = 4096
# Resumes longer than this are truncated before being sent to the model.
RESUME_TEXT_MAX_CHARS = int(os.getenv("RESUME_TEXT_MAX_CHARS", "20000"))

# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

API_KEY: Optional[str] = os.getenv("API_KEY") or None
