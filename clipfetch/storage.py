"""
Temp-directory artifact management with automatic cleanup
"""

import asyncio
import re
import shutil
import time
import uuid
from pathlib import Path
from typing import Optional
import logging

from . import config

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Replace anything outside [a-zA-Z0-9._-] with underscores."""
    return _UNSAFE_CHARS.sub("_", filename)


class StorageManager:
    """Owns the temp directory that downloads land in"""

    def __init__(
        self,
        temp_dir: Path = config.TEMP_DIR,
        file_ttl: int = config.FILE_TTL_SECONDS,
        cleanup_interval: int = config.CLEANUP_INTERVAL_SECONDS,
    ):
        self.temp_dir = Path(temp_dir)
        self.file_ttl = file_ttl
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: Optional[asyncio.Task] = None
        self._init_storage()

    def _init_storage(self):
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized at {self.temp_dir} (TTL: {self.file_ttl}s)")

    def new_artifact_path(self, prefix: str = "video", ext: str = "mp4") -> Path:
        """Unique per-request output path, safe under concurrent requests"""
        stamp = int(time.time() * 1000)
        return self.temp_dir / f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}.{ext}"

    def resolve(self, filename: str) -> Optional[Path]:
        """Path for a client-supplied filename, or None if it escapes the temp dir"""
        if not filename or filename != Path(filename).name or filename in (".", ".."):
            return None
        return self.temp_dir / filename

    def delete_file(self, path: Path):
        try:
            path.unlink(missing_ok=True)
            logger.info(f"Deleted artifact: {path.name}")
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")

    async def delete_later(self, path: Path, delay: float = config.FILE_DELETE_DELAY_SECONDS):
        """Delete a served file once the client has had time to finish reading it"""
        await asyncio.sleep(delay)
        if path.exists():
            self.delete_file(path)

    def cleanup_old_files(self):
        """Remove files older than TTL"""
        if not self.temp_dir.exists():
            return

        removed_count = 0
        removed_bytes = 0
        now = time.time()

        for file_path in self.temp_dir.iterdir():
            if not file_path.is_file():
                continue
            try:
                stat = file_path.stat()
                if now - stat.st_mtime <= self.file_ttl:
                    continue
                file_path.unlink()
                removed_count += 1
                removed_bytes += stat.st_size
            except OSError as e:
                logger.error(f"Failed to cleanup {file_path.name}: {e}")

        if removed_count > 0:
            logger.info(f"Cleanup complete: {removed_count} files, {removed_bytes / 1024 / 1024:.2f} MB freed")

    def get_disk_usage(self) -> float:
        """Get disk usage percentage"""
        try:
            stat = shutil.disk_usage(self.temp_dir)
            return (stat.used / stat.total) * 100
        except Exception as e:
            logger.error(f"Failed to get disk usage: {e}")
            return 0.0

    async def start_cleanup_scheduler(self):
        """Start background cleanup task"""
        if self._cleanup_task is not None:
            logger.warning("Cleanup scheduler already running")
            return

        async def cleanup_loop():
            logger.info(f"Starting cleanup scheduler (interval: {self.cleanup_interval}s)")
            while True:
                try:
                    await asyncio.sleep(self.cleanup_interval)
                    self.cleanup_old_files()
                except asyncio.CancelledError:
                    logger.info("Cleanup scheduler cancelled")
                    break
                except Exception as e:
                    logger.error(f"Cleanup scheduler error: {e}")

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    async def stop_cleanup_scheduler(self):
        """Stop background cleanup task"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Cleanup scheduler stopped")
