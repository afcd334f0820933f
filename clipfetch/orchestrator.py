"""
Download orchestration: probe, pick a backend order, fall back once, and
normalize everything into exactly one response variant.

    start -> probe | skip_probe
          -> extractor_first | resolver_first
          -> fallback (the other backend, once)
          -> terminal

A request makes at most two backend calls and reaches terminal exactly once.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from . import config
from .archive import DriveUploader, UploadResult
from .credentials import CredentialStore
from .extractor import ExtractorAdapter
from .models import (
    AttemptErrors,
    ContentStateResponse,
    DownloadAttemptResult,
    DownloadMethod,
    DownloadSuccessResponse,
    DriveFile,
    MediaMetadata,
    NeedsExtensionResponse,
    PlatformCredential,
    ProbeResult,
    ProbeStatus,
    ResponseMetadata,
    ResponseStatus,
)
from .platforms import (
    CREDENTIAL_PLATFORMS,
    PROBE_POLICY_TABLE,
    Platform,
    ProbePolicy,
    detect_platform,
    probe_policy_for,
)
from .prober import StatusProber
from .resolver import ResolverAdapter

logger = logging.getLogger(__name__)

DownloadResponse = Union[DownloadSuccessResponse, ContentStateResponse, NeedsExtensionResponse]


class State(str, Enum):
    START = "start"
    PROBE = "probe"
    SKIP_PROBE = "skip_probe"
    EXTRACTOR_FIRST = "extractor_first"
    RESOLVER_FIRST = "resolver_first"
    FALLBACK = "fallback"
    TERMINAL = "terminal"


TRANSITIONS: Dict[State, Tuple[State, ...]] = {
    State.START: (State.PROBE, State.SKIP_PROBE),
    State.PROBE: (State.EXTRACTOR_FIRST, State.RESOLVER_FIRST, State.TERMINAL),
    State.SKIP_PROBE: (State.EXTRACTOR_FIRST, State.RESOLVER_FIRST),
    State.EXTRACTOR_FIRST: (State.FALLBACK, State.TERMINAL),
    State.RESOLVER_FIRST: (State.FALLBACK, State.TERMINAL),
    State.FALLBACK: (State.TERMINAL,),
    State.TERMINAL: (),
}

# Probe verdicts that end the request without downloading
BLOCKING_PROBE_STATUSES = {
    ProbeStatus.PRIVATE: (ResponseStatus.PRIVATE, False),
    ProbeStatus.GEO_BLOCKED: (ResponseStatus.GEO_BLOCKED, True),
    ProbeStatus.REMOVED: (ResponseStatus.REMOVED, False),
    ProbeStatus.UNAVAILABLE: (ResponseStatus.UNAVAILABLE, False),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class DownloadRun:
    """State of one request's pipeline"""
    url: str
    platform: Platform
    user_id: Optional[str] = None
    content_hash: Optional[str] = None
    inline_cookies: bool = False
    state: State = State.START
    trace: List[State] = field(default_factory=lambda: [State.START])
    attempts: List[DownloadAttemptResult] = field(default_factory=list)
    probe: Optional[ProbeResult] = None
    timings: Dict[str, int] = field(default_factory=dict)
    response: Optional[DownloadResponse] = None
    started: float = field(default_factory=time.monotonic)

    def advance(self, new_state: State) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        logger.debug(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.trace.append(new_state)

    def mark(self, step: str) -> None:
        elapsed = int((time.monotonic() - self.started) * 1000)
        self.timings[step] = elapsed
        logger.info(f"⏱️ {step}: {elapsed}ms")

    def finish(self, response: DownloadResponse) -> DownloadResponse:
        self.advance(State.TERMINAL)
        self.response = response
        return response

    @property
    def methods_tried(self) -> List[DownloadMethod]:
        return [a.method for a in self.attempts]


class DownloadOrchestrator:
    def __init__(
        self,
        credentials: CredentialStore,
        prober: StatusProber,
        resolver: ResolverAdapter,
        extractor: ExtractorAdapter,
        uploader: DriveUploader,
        probe_policy: Optional[Dict[Platform, ProbePolicy]] = None,
        inline_expiry_days: int = config.INLINE_COOKIE_EXPIRY_DAYS,
    ) -> None:
        self.credentials = credentials
        self.prober = prober
        self.resolver = resolver
        self.extractor = extractor
        self.uploader = uploader
        self.probe_policy = probe_policy if probe_policy is not None else PROBE_POLICY_TABLE
        self.inline_expiry_days = inline_expiry_days

    async def handle(
        self,
        url: str,
        user_id: Optional[str] = None,
        content_hash: Optional[str] = None,
        cookies: Optional[str] = None,
    ) -> DownloadRun:
        run = DownloadRun(
            url=url,
            platform=detect_platform(url),
            user_id=user_id,
            content_hash=content_hash,
        )
        logger.info(f"🎬 Download start: {url} (platform={run.platform.value}, user={user_id})")

        self._apply_inline_cookies(run, cookies)
        run.mark("Request parsed")

        if self._should_probe(run):
            run.advance(State.PROBE)
            blocked = await self._probe(run)
            if blocked is not None:
                run.finish(blocked)
                return run
        else:
            run.advance(State.SKIP_PROBE)
            logger.info(f"⏭️ Skipping status check for {run.platform.display_name}")
            if run.platform in CREDENTIAL_PLATFORMS and not run.inline_cookies:
                await self.credentials.refresh(run.platform)
                run.mark("Refreshed cookies")

        credential = self._credential_for(run)
        if credential is not None:
            order = (DownloadMethod.EXTRACTOR, DownloadMethod.RESOLVER)
            run.advance(State.EXTRACTOR_FIRST)
        else:
            order = (DownloadMethod.RESOLVER, DownloadMethod.EXTRACTOR)
            run.advance(State.RESOLVER_FIRST)

        for index, method in enumerate(order):
            if index > 0:
                run.advance(State.FALLBACK)
                logger.info(f"↩️ {order[index - 1].value} failed, falling back to {method.value}")
            result = await self._attempt(run, method, credential)
            if result.succeeded:
                run.finish(await self._success(run, result, credential))
                return run

        run.finish(self._needs_extension(run))
        return run

    # =========================================================================
    # TRANSITION HELPERS
    # =========================================================================

    def _apply_inline_cookies(self, run: DownloadRun, cookies: Optional[str]) -> None:
        cookies = (cookies or "").strip()
        if not cookies or run.platform not in CREDENTIAL_PLATFORMS:
            return
        logger.info(f"🍪 Using cookies from request for {run.platform.value}")
        self.credentials.submit(run.platform, cookies, expiry_days=self.inline_expiry_days)
        run.inline_cookies = True

    def _credential_for(self, run: DownloadRun) -> Optional[PlatformCredential]:
        if run.platform not in CREDENTIAL_PLATFORMS:
            return None
        return self.credentials.usable(run.platform)

    def _should_probe(self, run: DownloadRun) -> bool:
        policy = probe_policy_for(run.platform, self.probe_policy)
        if policy == ProbePolicy.SKIP:
            return False
        if self._credential_for(run) is not None:
            return False
        return True

    async def _probe(self, run: DownloadRun) -> Optional[ContentStateResponse]:
        run.mark("Checking video status")
        try:
            probe = await self.prober.probe(run.url)
        except Exception as e:
            logger.exception(f"💥 Status check raised: {e}")
            probe = ProbeResult(status=ProbeStatus.UNKNOWN, message="Status check unavailable")
        run.probe = probe
        run.mark("Status check done")

        blocking = BLOCKING_PROBE_STATUSES.get(probe.status)
        if blocking is None:
            return None

        status, requires_extension = blocking
        if status == ResponseStatus.PRIVATE:
            message = "🔒 This video is private"
        elif status == ResponseStatus.GEO_BLOCKED:
            message = "🌍 Video not available in your region"
        else:
            message = f"❌ {probe.message or 'Video is unavailable'}"
        logger.info(f"🚫 Probe blocked download: {status.value}")
        return ContentStateResponse(status=status, message=message, requires_extension=requires_extension)

    async def _attempt(
        self,
        run: DownloadRun,
        method: DownloadMethod,
        credential: Optional[PlatformCredential],
    ) -> DownloadAttemptResult:
        run.mark(f"Starting {method.value} download")
        try:
            if method == DownloadMethod.EXTRACTOR:
                result = await self.extractor.download(run.url, credential)
            else:
                result = await self.resolver.download(run.url)
        except Exception as e:
            logger.exception(f"💥 Unexpected exception in {method.value}: {e}")
            result = DownloadAttemptResult.failure(method, f"Unexpected exception: {e}")

        run.attempts.append(result)
        run.mark(f"{method.value} finished (success: {result.succeeded})")
        if not result.succeeded:
            logger.warning(f"⚠️ {method.value} failed: {(result.error_detail or '')[:200]}")
        return result

    async def _success(
        self,
        run: DownloadRun,
        result: DownloadAttemptResult,
        credential: Optional[PlatformCredential],
    ) -> DownloadSuccessResponse:
        metadata = result.metadata
        if metadata is None and result.method == DownloadMethod.RESOLVER:
            info = await self.prober.get_info(run.url)
            if info is not None:
                metadata = MediaMetadata(
                    title=info.title,
                    uploader=info.uploader,
                    thumbnail_url=info.thumbnail,
                )

        upload = await self._archive(run, result, metadata)

        size = result.artifact_size_bytes or 0
        if result.method == DownloadMethod.EXTRACTOR:
            label = "yt-dlp with cookies" if credential is not None else "yt-dlp"
        else:
            label = "resolver"
        message = f"✅ Downloaded via {label} ({size / (1024 * 1024):.2f} MB)"
        if upload.success:
            message += " & uploaded to Drive!"

        total = int((time.monotonic() - run.started) * 1000)
        logger.info(f"✅ Download complete via {result.method.value} in {total}ms")

        return DownloadSuccessResponse(
            method=result.method,
            filename=result.artifact_path.name,
            size=size,
            drive_uploaded=upload.success,
            drive_view_link=upload.view_link,
            drive_file=DriveFile(id=upload.file_id, web_view_link=upload.view_link) if upload.success else None,
            metadata=ResponseMetadata.from_media(metadata),
            timings=dict(run.timings),
            message=message,
        )

    async def _archive(
        self,
        run: DownloadRun,
        result: DownloadAttemptResult,
        metadata: Optional[MediaMetadata],
    ) -> UploadResult:
        run.mark("Starting Drive upload")
        try:
            upload = await self.uploader.upload(
                result.artifact_path, run.url, run.user_id, run.content_hash, metadata
            )
        except Exception as e:
            logger.error(f"❌ Drive hand-off raised: {e}")
            upload = UploadResult(success=False, error=str(e))
        run.mark(f"Drive upload finished (success: {upload.success})")
        return upload

    def _needs_extension(self, run: DownloadRun) -> NeedsExtensionResponse:
        errors = {a.method: a.error_detail for a in run.attempts}
        hint = self._credential_hint(run)
        logger.info("Both methods failed, waiting for extension...")
        return NeedsExtensionResponse(
            message=hint or "⏳ Waiting for browser extension...",
            needs_cookies=hint is not None,
            errors=AttemptErrors(
                resolver=errors.get(DownloadMethod.RESOLVER),
                extractor=errors.get(DownloadMethod.EXTRACTOR),
            ),
        )

    def _credential_hint(self, run: DownloadRun) -> Optional[str]:
        if run.platform not in CREDENTIAL_PLATFORMS:
            return None
        if self.credentials.usable(run.platform) is not None:
            return None
        name = run.platform.display_name
        if self.credentials.get(run.platform) is not None:
            return f"🍪 {name} cookies expired! Open the extension on {name} and click \"Sync Cookies\"."
        return f"🍪 {name} cookies not synced! Open the extension on {name} and click \"Sync Cookies\"."
