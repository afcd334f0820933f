"""
Pydantic models for request/response schemas, plus the internal result types
passed between the adapters and the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .platforms import Platform


# ============================================================================
# INTERNAL TYPES
# ============================================================================


class DownloadMethod(str, Enum):
    """Which backend produced an attempt"""
    RESOLVER = "resolver"
    EXTRACTOR = "extractor"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class PlatformCredential:
    """Session cookie material for one platform. Replaced, never mutated."""
    platform: Platform
    material: str
    synced_at: datetime
    expires_at: datetime

    def is_usable(self, now: datetime) -> bool:
        return bool(self.material) and now < self.expires_at


@dataclass
class MediaMetadata:
    title: Optional[str] = None
    uploader: Optional[str] = None
    thumbnail_url: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_info(cls, info: Dict[str, Any]) -> "MediaMetadata":
        """Build from a yt-dlp info dict (sidecar or extract_info)."""
        return cls(
            title=info.get("title"),
            uploader=info.get("uploader") or info.get("channel"),
            thumbnail_url=info.get("thumbnail"),
            description=info.get("description"),
        )


@dataclass
class DownloadAttemptResult:
    outcome: AttemptOutcome
    method: DownloadMethod
    artifact_path: Optional[Path] = None
    artifact_size_bytes: Optional[int] = None
    error_detail: Optional[str] = None
    metadata: Optional[MediaMetadata] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    @classmethod
    def success(
        cls,
        method: DownloadMethod,
        path: Path,
        size_bytes: int,
        metadata: Optional[MediaMetadata] = None,
    ) -> "DownloadAttemptResult":
        return cls(
            outcome=AttemptOutcome.SUCCESS,
            method=method,
            artifact_path=path,
            artifact_size_bytes=size_bytes,
            metadata=metadata,
        )

    @classmethod
    def failure(cls, method: DownloadMethod, error_detail: str) -> "DownloadAttemptResult":
        return cls(outcome=AttemptOutcome.FAILED, method=method, error_detail=error_detail)


class ReplyKind(str, Enum):
    """Shape of a reply from an external HTTP collaborator"""
    OK = "ok"
    MALFORMED = "malformed"
    NETWORK_ERROR = "network_error"


@dataclass
class ExternalReply:
    """Typed outcome of one external HTTP call; never raised, always returned."""
    kind: ReplyKind
    payload: Dict[str, Any] = field(default_factory=dict)
    status_code: Optional[int] = None
    error: Optional[str] = None
    base_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == ReplyKind.OK

    @classmethod
    def success(cls, payload: Dict[str, Any], status_code: int, base_url: Optional[str] = None) -> "ExternalReply":
        return cls(ReplyKind.OK, payload=payload, status_code=status_code, base_url=base_url)

    @classmethod
    def malformed(cls, error: str, status_code: Optional[int] = None, base_url: Optional[str] = None) -> "ExternalReply":
        return cls(ReplyKind.MALFORMED, status_code=status_code, error=error, base_url=base_url)

    @classmethod
    def network_error(cls, error: str) -> "ExternalReply":
        return cls(ReplyKind.NETWORK_ERROR, error=error)


# ============================================================================
# WIRE MODELS
# ============================================================================


class CamelModel(BaseModel):
    """Wire models use camelCase on the wire and snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProbeStatus(str, Enum):
    AVAILABLE = "available"
    PRIVATE = "private"
    GEO_BLOCKED = "geo-blocked"
    REMOVED = "removed"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class ResponseStatus(str, Enum):
    """Terminal status of POST /api/download"""
    SUCCESS = "success"
    PRIVATE = "private"
    GEO_BLOCKED = "geo-blocked"
    REMOVED = "removed"
    UNAVAILABLE = "unavailable"
    NEEDS_EXTENSION = "needs-extension"


class UrlRequest(CamelModel):
    """Request schema for /api/check and /api/info"""
    url: Optional[str] = Field(None, description="Video page URL")


class DownloadRequest(CamelModel):
    """Request schema for /api/download"""
    url: Optional[str] = Field(None, description="Video page URL")
    user_id: Optional[str] = Field(None, description="Owner of the archived copy")
    content_hash: Optional[str] = Field(None, description="Content key for the archived copy")
    cookies: Optional[str] = Field(None, description="Inline session cookies (name=value; ...)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "url": "https://www.instagram.com/reel/Cxyz123/",
                "userId": "user-1",
                "contentHash": "abc123",
            }
        }
    )


class CookieSubmitRequest(CamelModel):
    """Request schema for POST /api/cookies"""
    platform: Optional[str] = None
    cookies: Optional[str] = None


class ProbeResult(CamelModel):
    """Response schema for /api/check"""
    status: ProbeStatus
    message: Optional[str] = None
    title: Optional[str] = None


class VideoInfo(CamelModel):
    """Response schema for /api/info"""
    title: Optional[str] = None
    duration: Optional[float] = None
    thumbnail: Optional[str] = None
    uploader: Optional[str] = None
    platform: Optional[str] = None


class ResponseMetadata(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    thumbnail: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_media(cls, metadata: Optional[MediaMetadata]) -> "ResponseMetadata":
        if metadata is None:
            return cls()
        return cls(
            title=metadata.title,
            author=metadata.uploader,
            thumbnail=metadata.thumbnail_url,
            description=metadata.description,
        )


class DriveFile(CamelModel):
    id: Optional[str] = None
    web_view_link: Optional[str] = None


class DownloadSuccessResponse(CamelModel):
    success: bool = True
    status: ResponseStatus = ResponseStatus.SUCCESS
    method: DownloadMethod
    filename: str
    size: int
    drive_uploaded: bool = False
    drive_view_link: Optional[str] = None
    drive_file: Optional[DriveFile] = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
    timings: Dict[str, int] = Field(default_factory=dict)
    message: str


class ContentStateResponse(CamelModel):
    """Probe said the video cannot be fetched: private, geo-blocked, removed or unavailable"""
    success: bool = False
    status: ResponseStatus
    message: str
    requires_extension: bool = False


class AttemptErrors(CamelModel):
    resolver: Optional[str] = None
    extractor: Optional[str] = None


class NeedsExtensionResponse(CamelModel):
    success: bool = False
    status: ResponseStatus = ResponseStatus.NEEDS_EXTENSION
    message: str
    requires_extension: bool = True
    needs_cookies: bool = False
    errors: AttemptErrors


class ErrorResponse(CamelModel):
    success: bool = False
    message: str


class CredentialStatus(CamelModel):
    synced: bool
    expired: Optional[bool] = None
    synced_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CookieSubmitResponse(CamelModel):
    success: bool = True
    message: str
    platform: str
    expires_in: str
    expires_at: datetime


class HealthStats(CamelModel):
    """Statistics for health check"""
    total_downloads: int
    active_downloads: int
    failed_downloads: int
    disk_usage_percent: float
