"""
Hand-off of finished downloads to the storage backend (Drive upload).

An upload failure never fails the download; the caller just reports
driveUploaded: false.
"""

import base64
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import config
from .backend_client import BackendClient
from .models import MediaMetadata
from .platforms import detect_platform

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    success: bool
    view_link: Optional[str] = None
    file_id: Optional[str] = None
    skipped: bool = False
    error: Optional[str] = None


class DriveUploader:
    def __init__(self, backend: BackendClient, timeout: float = config.UPLOAD_TIMEOUT_SECONDS) -> None:
        self._backend = backend
        self.timeout = timeout

    async def upload(
        self,
        file_path: Optional[Path],
        url: str,
        user_id: Optional[str],
        content_hash: Optional[str],
        metadata: Optional[MediaMetadata] = None,
        transcript: Optional[str] = None,
    ) -> UploadResult:
        try:
            return await self._upload(file_path, url, user_id, content_hash, metadata or MediaMetadata(), transcript)
        except Exception as e:
            logger.error(f"❌ Error uploading to Drive: {e}")
            return UploadResult(success=False, error=str(e))

    async def _upload(
        self,
        file_path: Optional[Path],
        url: str,
        user_id: Optional[str],
        content_hash: Optional[str],
        metadata: MediaMetadata,
        transcript: Optional[str],
    ) -> UploadResult:
        if file_path is None or not file_path.is_file():
            logger.info("⚠️ No file to upload")
            return UploadResult(success=False, error="No file to upload")

        if not user_id or not content_hash:
            logger.info("⚠️ Missing userId or contentHash, skipping Drive upload")
            return UploadResult(success=False, skipped=True, error="Missing userId or contentHash")

        started = time.monotonic()
        raw = file_path.read_bytes()
        logger.info(f"📤 Drive upload start: {file_path.name} ({len(raw) / 1024 / 1024:.2f} MB)")

        body = {
            "userId": user_id,
            "contentHash": content_hash,
            "url": url,
            "filename": file_path.name,
            "mediaData": base64.b64encode(raw).decode("ascii"),
            "mimeType": "video/mp4",
            "platform": detect_platform(url).value,
            "title": metadata.title,
            "author": metadata.uploader,
            "thumbnailUrl": metadata.thumbnail_url,
            "caption": metadata.description,
            "postUrl": url,
            "transcript": transcript,
        }
        reply = await self._backend.post_json("/upload-to-drive", body, timeout=self.timeout)

        if not reply.ok:
            logger.warning(f"❌ Drive upload failed: {reply.error}")
            return UploadResult(success=False, error=reply.error)
        if reply.status_code is not None and reply.status_code >= 400:
            logger.warning(f"❌ Backend returned {reply.status_code}: {str(reply.payload)[:200]}")
            return UploadResult(success=False, error=f"Backend error: {reply.status_code}")

        data = reply.payload
        if data.get("success") and data.get("skipped"):
            logger.info("⚠️ Drive upload skipped by backend (not configured)")
            return UploadResult(success=False, skipped=True, error="Drive upload skipped by backend (not configured)")
        if not data.get("success"):
            logger.warning(f"❌ Drive upload failed: {data.get('error')}")
            return UploadResult(success=False, error=str(data.get("error") or "upload failed"))

        drive_file = data.get("driveFile") if isinstance(data.get("driveFile"), dict) else {}
        view_link = drive_file.get("webViewLink") or data.get("viewLink")
        file_id = drive_file.get("id") or data.get("fileId")

        elapsed = time.monotonic() - started
        logger.info(f"✅ Drive upload complete in {elapsed:.1f}s: {view_link}")

        # archived, the local copy is no longer needed
        file_path.unlink(missing_ok=True)
        return UploadResult(success=True, view_link=view_link, file_id=file_id)
