"""
Availability probe and metadata lookup via yt-dlp, without downloading.

The probe classifies yt-dlp's diagnostic text. That text is not a stable
interface, so the result is best-effort: a wrong "available" only means the
orchestrator goes on to a real download attempt, which fails safely.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import yt_dlp

from . import config
from .models import ProbeResult, ProbeStatus, VideoInfo
from .process import ProcessResult, ProcessRunner, run_process

logger = logging.getLogger(__name__)

PRIVATE_MARKERS = (
    "Private video",
    "This video is private",
    "Sign in to confirm your age",
)
PRIVATE_AVAILABILITY = ("private", "needs_auth")
UNAVAILABLE_MARKERS = ("Video unavailable", "is not available")
GEO_MARKERS = ("not available in your country", "not made this video available in your country")
REMOVED_MARKER = "removed"


def classify_probe_output(result: ProcessResult) -> ProbeResult:
    """Best-effort mapping of a probe run onto a ProbeStatus."""
    if result.timed_out:
        return ProbeResult(status=ProbeStatus.UNKNOWN, message="Check timed out")
    if result.spawn_error:
        return ProbeResult(status=ProbeStatus.UNKNOWN, message="Status check unavailable")

    lines = result.stdout.strip().splitlines()
    availability = lines[0].strip() if lines else ""
    title = lines[1].strip() if len(lines) > 1 else None
    stderr = result.stderr

    if any(marker in stderr for marker in PRIVATE_MARKERS) or availability in PRIVATE_AVAILABILITY:
        return ProbeResult(
            status=ProbeStatus.PRIVATE,
            message="This video is private or requires authentication",
            title=title,
        )

    if result.returncode != 0 or any(marker in stderr for marker in UNAVAILABLE_MARKERS):
        if any(marker in stderr for marker in GEO_MARKERS):
            return ProbeResult(status=ProbeStatus.GEO_BLOCKED, message="Video not available in your region", title=title)
        if REMOVED_MARKER in stderr:
            return ProbeResult(status=ProbeStatus.REMOVED, message="Video has been removed", title=title)
        return ProbeResult(status=ProbeStatus.UNAVAILABLE, message="Video is unavailable", title=title)

    return ProbeResult(status=ProbeStatus.AVAILABLE, title=title)


class StatusProber:
    def __init__(
        self,
        runner: ProcessRunner = run_process,
        binary: str = config.YTDLP_BINARY,
        timeout: float = config.PROBE_TIMEOUT_SECONDS,
        info_timeout: float = config.INFO_TIMEOUT_SECONDS,
    ) -> None:
        self._runner = runner
        self.binary = binary
        self.timeout = timeout
        self.info_timeout = info_timeout

    async def probe(self, url: str) -> ProbeResult:
        cmd = [
            self.binary,
            "--skip-download",
            "--print", "%(availability)s",
            "--print", "%(title)s",
            "--no-warnings",
            url,
        ]
        result = await self._runner(cmd, self.timeout)
        probe = classify_probe_output(result)
        logger.info(f"🔎 Probe {url}: {probe.status.value}")
        return probe

    async def get_info(self, url: str) -> Optional[VideoInfo]:
        """Title/duration/thumbnail/uploader for a URL, or None if it cannot be read."""
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
        }

        def _extract():
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(url, download=False)

        loop = asyncio.get_running_loop()
        try:
            info = await asyncio.wait_for(
                loop.run_in_executor(None, _extract),
                timeout=self.info_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Info lookup timed out after {self.info_timeout:.0f}s: {url}")
            return None
        except yt_dlp.utils.DownloadError as e:
            logger.warning(f"yt-dlp info extraction failed: {str(e)[:200]}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error during info extraction: {e}")
            return None

        if not info:
            return None

        return VideoInfo(
            title=info.get("title"),
            duration=info.get("duration"),
            thumbnail=info.get("thumbnail"),
            uploader=info.get("uploader") or info.get("channel"),
            platform=info.get("extractor_key"),
        )
