"""
Environment-driven configuration for the clipfetch service
"""

import os
import tempfile
import logging
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def _get_env_int(key: str, default: int, min_val: Optional[int] = None) -> int:
    """Read an integer env var, falling back to the default on bad input."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        int_val = int(value)
    except ValueError:
        logger.warning(f"⚠️ {key}={value!r} is not a valid integer, using default {default}")
        return default
    if min_val is not None and int_val < min_val:
        logger.warning(f"⚠️ {key}={int_val} is below minimum {min_val}, using {min_val}")
        return min_val
    return int_val


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        value = value.strip().rstrip("/")
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


# Service
VERSION = "1.0.0"
APP_ENV = os.getenv("APP_ENV", "development")
PORT = _get_env_int("PORT", 3002, min_val=1)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Resolver API (cobalt-compatible); COBALT_URL kept as an alias
RESOLVER_URL = os.getenv("RESOLVER_URL") or os.getenv("COBALT_URL") or "http://localhost:9000/"
RESOLVER_TIMEOUT_SECONDS = _get_env_int("RESOLVER_TIMEOUT_SECONDS", 90, min_val=1)

# Credential + storage backend. Services may run in Docker or on the host,
# so several base URLs are tried in order.
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:3001/api")
BACKEND_URL_CANDIDATES = _unique(
    [BACKEND_URL]
    + os.getenv(
        "BACKEND_URL_CANDIDATES",
        "http://localhost:3001/api,http://127.0.0.1:3001/api,http://host.docker.internal:3001/api",
    ).split(",")
)
BACKEND_TIMEOUT_SECONDS = _get_env_int("BACKEND_TIMEOUT_SECONDS", 30, min_val=1)
UPLOAD_TIMEOUT_SECONDS = _get_env_int("UPLOAD_TIMEOUT_SECONDS", 300, min_val=1)

# Quality limits
MAX_VIDEO_HEIGHT = _get_env_int("MAX_VIDEO_HEIGHT", 480, min_val=144)
MAX_VIDEO_FILESIZE_MB = _get_env_int("MAX_VIDEO_FILESIZE_MB", 50, min_val=1)

# Artifact validation: anything below this is not a plausible video
MIN_ARTIFACT_BYTES = _get_env_int("MIN_ARTIFACT_BYTES", 10 * 1024, min_val=1)

# Temp storage
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(Path(tempfile.gettempdir()) / "clipfetch-downloads")))
FILE_TTL_SECONDS = _get_env_int("FILE_TTL_SECONDS", 1800, min_val=1)
CLEANUP_INTERVAL_SECONDS = _get_env_int("CLEANUP_INTERVAL_SECONDS", 300, min_val=1)
FILE_DELETE_DELAY_SECONDS = _get_env_int("FILE_DELETE_DELAY_SECONDS", 5, min_val=0)

# External executables and their wall-clock limits
YTDLP_BINARY = os.getenv("YTDLP_BINARY", "yt-dlp")
CURL_BINARY = os.getenv("CURL_BINARY", "curl")
PROBE_TIMEOUT_SECONDS = _get_env_int("PROBE_TIMEOUT_SECONDS", 10, min_val=1)
INFO_TIMEOUT_SECONDS = _get_env_int("INFO_TIMEOUT_SECONDS", 15, min_val=1)
DOWNLOAD_TIMEOUT_SECONDS = _get_env_int("DOWNLOAD_TIMEOUT_SECONDS", 300, min_val=1)

# Browser to borrow cookies from when no synced credential exists (dev only)
EXTRACTOR_BROWSER_COOKIES = os.getenv("EXTRACTOR_BROWSER_COOKIES", "").strip() or None

# Per-platform probe policy overrides, e.g. "youtube=probe,tiktok=skip"
PROBE_POLICY = os.getenv("PROBE_POLICY", "")

# Session length per platform, in days
COOKIE_EXPIRY_DAYS = {
    "instagram": 90,
    "twitter": 365,
    "youtube": 180,
}
INLINE_COOKIE_EXPIRY_DAYS = 90
