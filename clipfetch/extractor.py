"""
Extractor backend: run the yt-dlp CLI to resolve and fetch in one step.

This is the only backend that can carry session cookies, so it is tried
first whenever the platform has a usable credential.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from . import config
from .models import DownloadAttemptResult, DownloadMethod, MediaMetadata, PlatformCredential
from .platforms import (
    COOKIE_DOMAINS,
    GOOGLE_IDENTITY_COOKIES,
    GOOGLE_IDENTITY_DOMAIN,
    Platform,
    detect_platform,
)
from .process import ProcessRunner, run_process
from .storage import StorageManager
from .validator import ArtifactValidator

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

SIDECAR_SUFFIX = ".info.json"


# =========================================================================
# ERROR CLASSIFICATION
# =========================================================================


class ExtractorFailure(str, Enum):
    VERIFICATION_REQUIRED = "verification_required"
    ACCESS_DENIED = "access_denied"
    NOT_AVAILABLE = "not_available"
    PRIVATE = "private"
    TIMEOUT = "timeout"
    FAILED = "failed"


FAILURE_MESSAGES = {
    ExtractorFailure.VERIFICATION_REQUIRED: "YouTube requires verification. Please try again with the browser extension.",
    ExtractorFailure.ACCESS_DENIED: (
        "Access denied. The video might be age-restricted or region-locked. "
        "Please try again with the browser extension."
    ),
    ExtractorFailure.NOT_AVAILABLE: "Video is not available in this region or has been removed.",
    ExtractorFailure.PRIVATE: "This video is private and cannot be downloaded.",
    ExtractorFailure.TIMEOUT: "Download timed out",
    ExtractorFailure.FAILED: "yt-dlp download failed",
}


def classify_extractor_error(stderr: str) -> Tuple[ExtractorFailure, str]:
    """Best-effort mapping of yt-dlp stderr onto a user-facing failure category."""
    if "Sign in to confirm" in stderr:
        kind = ExtractorFailure.VERIFICATION_REQUIRED
    elif "Forbidden" in stderr:
        kind = ExtractorFailure.ACCESS_DENIED
    elif "not available" in stderr.lower():
        kind = ExtractorFailure.NOT_AVAILABLE
    elif "Private video" in stderr:
        kind = ExtractorFailure.PRIVATE
    else:
        kind = ExtractorFailure.FAILED
    return kind, FAILURE_MESSAGES[kind]


# =========================================================================
# COOKIE JAR
# =========================================================================


def cookie_jar_lines(credential: PlatformCredential) -> List[str]:
    """Netscape cookies.txt lines for a "name=value; name2=value2" cookie string."""
    domain = COOKIE_DOMAINS.get(credential.platform, f".{credential.platform.value}.com")
    expiry = int(credential.expires_at.timestamp())
    lines = [
        "# Netscape HTTP Cookie File",
        "# https://curl.se/docs/http-cookies.html",
        "",
    ]

    for pair in credential.material.split(";"):
        name, sep, value = pair.strip().partition("=")
        name, value = name.strip(), value.strip()
        if not sep or not name or not value:
            continue

        domains = [domain]
        if credential.platform == Platform.YOUTUBE and (
            name.startswith("__Secure-") or name in GOOGLE_IDENTITY_COOKIES
        ):
            domains.append(GOOGLE_IDENTITY_DOMAIN)

        for cookie_domain in domains:
            # domain, include subdomains, path, secure, expiry, name, value
            lines.append(f"{cookie_domain}\tTRUE\t/\tTRUE\t{expiry}\t{name}\t{value}")

    return lines


def write_cookie_jar(credential: PlatformCredential, path: Path) -> int:
    """Write the jar file; returns the number of cookie lines written."""
    lines = cookie_jar_lines(credential)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    count = len(lines) - 3
    logger.info(f"📝 Created cookie file {path.name} with {count} cookies")
    return count


# =========================================================================
# ADAPTER
# =========================================================================


def build_format_selector(platform: Platform, max_height: int) -> str:
    height = f"[height<={max_height}]"
    if platform == Platform.INSTAGRAM:
        # Instagram serves combined streams; avoid a merge step
        return f"best{height}[ext=mp4]/best{height}/best"
    # H.264 in mp4 needs no re-encode
    return (
        f"bestvideo{height}[vcodec^=avc1][ext=mp4]+bestaudio[ext=m4a]/"
        f"bestvideo{height}[ext=mp4]+bestaudio[ext=m4a]/"
        f"bestvideo{height}+bestaudio/"
        f"best{height}/best"
    )


class ExtractorAdapter:
    method = DownloadMethod.EXTRACTOR

    def __init__(
        self,
        storage: StorageManager,
        validator: ArtifactValidator,
        runner: ProcessRunner = run_process,
        binary: str = config.YTDLP_BINARY,
        timeout: float = config.DOWNLOAD_TIMEOUT_SECONDS,
        max_height: int = config.MAX_VIDEO_HEIGHT,
        max_filesize_mb: int = config.MAX_VIDEO_FILESIZE_MB,
        browser_cookies: Optional[str] = config.EXTRACTOR_BROWSER_COOKIES,
    ) -> None:
        self.storage = storage
        self.validator = validator
        self._runner = runner
        self.binary = binary
        self.timeout = timeout
        self.max_height = max_height
        self.max_filesize_mb = max_filesize_mb
        self.browser_cookies = browser_cookies

    def build_command(
        self,
        url: str,
        platform: Platform,
        output_path: Path,
        cookie_file: Optional[Path] = None,
    ) -> List[str]:
        cmd = [
            self.binary,
            "-f", build_format_selector(platform, self.max_height),
            "--max-filesize", f"{self.max_filesize_mb}M",
            "--merge-output-format", "mp4",
            # remux only, never re-encode
            "--postprocessor-args", "ffmpeg:-c:v copy -c:a copy",
            "-o", str(output_path),
            "--no-playlist",
            "--no-warnings",
            "--newline",
            "--write-info-json",
        ]

        if platform == Platform.YOUTUBE:
            cmd += [
                "--user-agent", BROWSER_USER_AGENT,
                "--extractor-args", "youtube:player_client=web",
                "--sleep-interval", "1",
                "--max-sleep-interval", "3",
            ]

        if cookie_file is not None:
            cmd += ["--cookies", str(cookie_file)]
        elif self.browser_cookies:
            cmd += ["--cookies-from-browser", self.browser_cookies]

        cmd.append(url)
        return cmd

    async def download(self, url: str, credential: Optional[PlatformCredential] = None) -> DownloadAttemptResult:
        output_path = self.storage.new_artifact_path("video", "mp4")
        cookie_file: Optional[Path] = None
        try:
            if credential is not None:
                cookie_file = output_path.with_name(f"{output_path.stem}.cookies.txt")
                write_cookie_jar(credential, cookie_file)
                logger.info(f"🍪 Using synced {credential.platform.value} cookies")
            return await self._download(url, output_path, cookie_file)
        except Exception as e:
            logger.exception(f"💥 Unexpected extractor error: {e}")
            output_path.unlink(missing_ok=True)
            return DownloadAttemptResult.failure(self.method, f"yt-dlp error: {e}")
        finally:
            if cookie_file is not None:
                cookie_file.unlink(missing_ok=True)
            # a failed run can still leave a sidecar behind
            for leftover in self._sidecar_candidates(output_path):
                leftover.unlink(missing_ok=True)

    async def _download(self, url: str, output_path: Path, cookie_file: Optional[Path]) -> DownloadAttemptResult:
        platform = detect_platform(url)
        cmd = self.build_command(url, platform, output_path, cookie_file)
        logger.info(f"📥 yt-dlp start: {url} -> {output_path.name}")

        result = await self._runner(cmd, self.timeout)

        if result.timed_out:
            output_path.unlink(missing_ok=True)
            return DownloadAttemptResult.failure(self.method, FAILURE_MESSAGES[ExtractorFailure.TIMEOUT])
        if result.spawn_error:
            return DownloadAttemptResult.failure(self.method, f"yt-dlp could not start: {result.spawn_error}")
        if result.returncode != 0:
            output_path.unlink(missing_ok=True)
            kind, message = classify_extractor_error(result.stderr)
            logger.warning(f"yt-dlp exited {result.returncode} ({kind.value}): {result.stderr.strip()[:300]}")
            return DownloadAttemptResult.failure(self.method, message)

        validation = self.validator.validate(output_path)
        if not validation.ok:
            return DownloadAttemptResult.failure(self.method, validation.describe())

        metadata = self.read_sidecar(output_path)
        logger.info(f"✅ Downloaded {validation.size_bytes / 1024 / 1024:.2f}MB via yt-dlp")
        return DownloadAttemptResult.success(self.method, output_path, validation.size_bytes, metadata)

    def _sidecar_candidates(self, output_path: Path) -> List[Path]:
        """Sidecar locations in search order; duplicates and missing files dropped."""
        ordered = [
            output_path.with_name(f"{output_path.stem}{SIDECAR_SUFFIX}"),
            output_path.with_name(f"{output_path.name}{SIDECAR_SUFFIX}"),
        ]
        if output_path.parent.exists():
            ordered += sorted(
                p for p in output_path.parent.iterdir()
                if p.name.startswith(output_path.stem) and p.name.endswith(SIDECAR_SUFFIX)
            )

        seen = set()
        found = []
        for path in ordered:
            if path not in seen and path.is_file():
                seen.add(path)
                found.append(path)
        return found

    def read_sidecar(self, output_path: Path) -> Optional[MediaMetadata]:
        """Recover metadata from the --write-info-json file, then delete it."""
        for path in self._sidecar_candidates(output_path):
            try:
                info = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"⚠️ Failed to parse {path.name}: {e}")
                continue
            finally:
                path.unlink(missing_ok=True)

            if isinstance(info, dict):
                metadata = MediaMetadata.from_info(info)
                logger.info(f"📝 Captured metadata from {path.name}: title={(metadata.title or '')[:50]!r}")
                return metadata

        logger.warning("⚠️ No .info.json file found for metadata extraction")
        return None
