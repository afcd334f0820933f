"""
Byte-count sanity check applied to every downloaded artifact.

Both backends and the file endpoint go through the same gate, so a file is
never reported or served unless it passed here. Failed files are deleted.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import config

logger = logging.getLogger(__name__)

REASON_MISSING = "missing"
REASON_EMPTY = "empty"
REASON_TOO_SMALL = "too small / corrupted"


@dataclass
class ValidationResult:
    ok: bool
    size_bytes: int = 0
    reason: Optional[str] = None

    def describe(self) -> str:
        """Human-readable failure text for attempt diagnostics."""
        if self.ok:
            return f"valid ({self.size_bytes} bytes)"
        if self.reason == REASON_EMPTY:
            return "Downloaded file is empty (0KB)"
        if self.reason == REASON_TOO_SMALL:
            return f"Downloaded file is too small ({self.size_bytes / 1024:.2f}KB) - likely corrupted"
        return "Download completed but file not found"


class ArtifactValidator:
    def __init__(self, min_bytes: int = config.MIN_ARTIFACT_BYTES):
        self.min_bytes = min_bytes

    def validate(self, path: Optional[Path]) -> ValidationResult:
        if path is None or not path.is_file():
            return ValidationResult(ok=False, reason=REASON_MISSING)

        size = path.stat().st_size
        if size == 0:
            logger.warning(f"❌ {path.name} is 0 bytes - deleting")
            self._discard(path)
            return ValidationResult(ok=False, size_bytes=0, reason=REASON_EMPTY)

        if size < self.min_bytes:
            logger.warning(f"⚠️ {path.name} is only {size} bytes (< {self.min_bytes}) - deleting")
            self._discard(path)
            return ValidationResult(ok=False, size_bytes=size, reason=REASON_TOO_SMALL)

        return ValidationResult(ok=True, size_bytes=size)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete invalid artifact {path}: {e}")
