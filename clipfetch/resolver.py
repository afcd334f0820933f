"""
Resolver backend: ask a cobalt-compatible API for a direct media URL, then
fetch it with curl.
"""

import logging
from typing import Optional

import httpx

from . import config
from .backend_client import parse_json_reply
from .models import DownloadAttemptResult, DownloadMethod, ExternalReply
from .process import ProcessRunner, run_process
from .storage import StorageManager, sanitize_filename
from .validator import ArtifactValidator

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def resolver_extension(filename: Optional[str]) -> str:
    """Extension of the resolver's suggested filename, mp4 when it has none."""
    name = sanitize_filename(str(filename or "")).strip(".")
    _, dot, ext = name.rpartition(".")
    if not dot or not ext:
        return "mp4"
    return ext.lower()


class ResolverAdapter:
    method = DownloadMethod.RESOLVER

    def __init__(
        self,
        storage: StorageManager,
        validator: ArtifactValidator,
        api_url: str = config.RESOLVER_URL,
        runner: ProcessRunner = run_process,
        curl_binary: str = config.CURL_BINARY,
        api_timeout: float = config.RESOLVER_TIMEOUT_SECONDS,
        fetch_timeout: float = config.DOWNLOAD_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.storage = storage
        self.validator = validator
        self.api_url = api_url
        self._runner = runner
        self.curl_binary = curl_binary
        self.api_timeout = api_timeout
        self.fetch_timeout = fetch_timeout
        self._transport = transport

    async def resolve(self, url: str) -> ExternalReply:
        """POST the page URL to the resolver. Generous timeout for cold starts."""
        logger.info(f"🔗 Calling resolver API: {self.api_url}")
        try:
            async with httpx.AsyncClient(timeout=self.api_timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.api_url,
                    json={"url": url},
                    headers={"Accept": "application/json", "Content-Type": "application/json"},
                )
        except httpx.TimeoutException:
            return ExternalReply.network_error(f"resolver API timed out after {self.api_timeout:.0f}s")
        except httpx.HTTPError as e:
            return ExternalReply.network_error(f"resolver API request failed: {e}")

        logger.info(f"📬 Resolver response status: {resp.status_code}")
        return parse_json_reply(resp)

    async def download(self, url: str) -> DownloadAttemptResult:
        try:
            return await self._download(url)
        except Exception as e:
            logger.exception(f"💥 Unexpected resolver error: {e}")
            return DownloadAttemptResult.failure(self.method, f"resolver error: {e}")

    async def _download(self, url: str) -> DownloadAttemptResult:
        reply = await self.resolve(url)
        if not reply.ok:
            logger.warning(f"⚠️ Resolver failed: {reply.error}")
            return DownloadAttemptResult.failure(self.method, reply.error or "resolver failed")

        data = reply.payload
        if data.get("status") == "error":
            err = data.get("error")
            code = err.get("code") if isinstance(err, dict) else err
            return DownloadAttemptResult.failure(self.method, str(code or "resolver failed"))

        media_url = data.get("url")
        if not media_url or not isinstance(media_url, str):
            return DownloadAttemptResult.failure(self.method, "no location returned")

        output_path = self.storage.new_artifact_path("resolver", resolver_extension(data.get("filename")))
        logger.info(f"Resolver returned a location (status: {data.get('status')}), fetching to {output_path.name}")

        cmd = [
            self.curl_binary,
            "-L",
            "-f",
            "-sS",
            "-o", str(output_path),
            "-H", f"User-Agent: {USER_AGENT}",
            "--connect-timeout", "30",
            "--max-time", str(int(self.fetch_timeout)),
            media_url,
        ]
        result = await self._runner(cmd, self.fetch_timeout)

        if result.timed_out:
            output_path.unlink(missing_ok=True)
            return DownloadAttemptResult.failure(self.method, "Resolver download timed out")
        if result.spawn_error:
            return DownloadAttemptResult.failure(self.method, f"curl spawn error: {result.spawn_error}")
        if result.returncode != 0:
            output_path.unlink(missing_ok=True)
            detail = result.stderr.strip() or "unknown error"
            logger.error(f"curl stderr: {detail[:300]}")
            return DownloadAttemptResult.failure(self.method, f"curl failed (code {result.returncode}): {detail[:200]}")

        validation = self.validator.validate(output_path)
        if not validation.ok:
            return DownloadAttemptResult.failure(self.method, validation.describe())

        logger.info(f"✅ Resolver download complete: {validation.size_bytes / 1024 / 1024:.2f} MB")
        return DownloadAttemptResult.success(self.method, output_path, validation.size_bytes)
