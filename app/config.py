import os
from dotenv import load_dotenv

# Load variables from .env into environment
load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    raw = os.getenv(name, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise RuntimeError(f"Invalid boolean for {name}: {raw!r}")


def _get_number(name: str, default: str, cast=float):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}") from None


# =========================
# TAIGA HTTP CONFIG
# =========================
REQUEST_TIMEOUT_SECONDS = _get_number("REQUEST_TIMEOUT_SECONDS", "30")
# Some self-hosted Taiga instances use self-signed certs; opt out explicitly.
VERIFY_SSL = _get_bool("VERIFY_SSL", "true")
TAIGA_REFERER = os.getenv("TAIGA_REFERER", "")

# =========================
# EXTRACTION CONFIG
# =========================
PAGE_DELAY_SECONDS = _get_number("PAGE_DELAY_SECONDS", "0.1")
COMMENT_DELAY_SECONDS = _get_number("COMMENT_DELAY_SECONDS", "0.05")
EXTRACTION_TIMEOUT_SECONDS = _get_number("EXTRACTION_TIMEOUT_SECONDS", "300")
MAX_TIMELINE_ITEMS = _get_number("MAX_TIMELINE_ITEMS", "10000", cast=int)
TIMEZONE = os.getenv("TIMEZONE", "UTC")
EMIT_RAW_RESPONSES = _get_bool("EMIT_RAW_RESPONSES", "false")

# =========================
# CONSUMER CONFIG
# =========================
API_URL = os.getenv("API_URL", "http://localhost:8000")

# =========================
# LOGGING
# =========================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# =========================
# VALIDATION (FAIL FAST)
# =========================
invalid = []

if REQUEST_TIMEOUT_SECONDS <= 0:
    invalid.append("REQUEST_TIMEOUT_SECONDS")

if EXTRACTION_TIMEOUT_SECONDS <= 0:
    invalid.append("EXTRACTION_TIMEOUT_SECONDS")

if MAX_TIMELINE_ITEMS <= 0:
    invalid.append("MAX_TIMELINE_ITEMS")

if PAGE_DELAY_SECONDS < 0 or COMMENT_DELAY_SECONDS < 0:
    invalid.append("PAGE_DELAY_SECONDS/COMMENT_DELAY_SECONDS")

if invalid:
    raise RuntimeError(f"Invalid configuration values: {', '.join(invalid)}")
