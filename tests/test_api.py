"""
HTTP surface tests. The module-level collaborators in clipfetch.main are
swapped for fakes per test; no lifespan runs.
"""

import sys
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from clipfetch import config
from clipfetch import main
from clipfetch.credentials import CredentialStore
from clipfetch.models import (
    AttemptErrors,
    DownloadMethod,
    DownloadSuccessResponse,
    NeedsExtensionResponse,
    ProbeResult,
    ProbeStatus,
    VideoInfo,
)
from clipfetch.orchestrator import DownloadRun
from clipfetch.platforms import detect_platform
from clipfetch.prober import StatusProber

from conftest import FIXED_NOW, MIN_BYTES, write_bytes


class StubOrchestrator:
    def __init__(self, response=None, raises=None):
        self.response = response
        self.raises = raises
        self.calls = []

    async def handle(self, url, user_id=None, content_hash=None, cookies=None):
        self.calls.append({"url": url, "user_id": user_id, "content_hash": content_hash, "cookies": cookies})
        if self.raises is not None:
            raise self.raises
        run = DownloadRun(url=url, platform=detect_platform(url))
        run.response = self.response
        return run


class StubProber:
    def __init__(self, probe=None, info=None):
        self._probe = probe
        self._info = info

    async def probe(self, url):
        return self._probe

    async def get_info(self, url):
        return self._info


@pytest.fixture
def store(clock, monkeypatch):
    store = CredentialStore(clock=clock)
    monkeypatch.setattr(main, "credentials", store)
    return store


@pytest.fixture
def served(storage, validator, monkeypatch):
    monkeypatch.setattr(main, "storage", storage)
    monkeypatch.setattr(main, "validator", validator)
    monkeypatch.setattr(config, "FILE_DELETE_DELAY_SECONDS", 0)
    return storage


@pytest.fixture
async def client():
    transport = ASGITransport(app=main.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── /api/download ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_download_requires_url(client):
    resp = await client.post("/api/download", json={})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "URL is required", "message": "URL is required"}


@pytest.mark.asyncio
async def test_download_success_passes_camel_case_fields(client, monkeypatch):
    response = DownloadSuccessResponse(
        method=DownloadMethod.RESOLVER,
        filename="clip.mp4",
        size=12 * 1024 * 1024,
        message="✅ Downloaded via resolver (12.00 MB)",
    )
    stub = StubOrchestrator(response)
    monkeypatch.setattr(main, "orchestrator", stub)

    resp = await client.post("/api/download", json={
        "url": "https://www.tiktok.com/@a/video/1",
        "userId": "u1",
        "contentHash": "h1",
        "cookies": "a=b",
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["method"] == "resolver"
    assert body["driveUploaded"] is False
    assert stub.calls == [{
        "url": "https://www.tiktok.com/@a/video/1",
        "user_id": "u1",
        "content_hash": "h1",
        "cookies": "a=b",
    }]


@pytest.mark.asyncio
async def test_download_needs_extension_is_http_200(client, monkeypatch):
    response = NeedsExtensionResponse(
        message="⏳ Waiting for browser extension...",
        errors=AttemptErrors(resolver="no location returned", extractor="yt-dlp download failed"),
    )
    monkeypatch.setattr(main, "orchestrator", StubOrchestrator(response))

    resp = await client.post("/api/download", json={"url": "https://vimeo.com/1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "needs-extension"
    assert body["requiresExtension"] is True
    assert body["errors"] == {"resolver": "no location returned", "extractor": "yt-dlp download failed"}


@pytest.mark.asyncio
async def test_download_unexpected_error_is_500(client, monkeypatch):
    monkeypatch.setattr(main, "orchestrator", StubOrchestrator(raises=RuntimeError("boom")))
    resp = await client.post("/api/download", json={"url": "https://vimeo.com/1"})
    assert resp.status_code == 500
    assert resp.json()["success"] is False
    assert main.stats["active_downloads"] == 0


# ─── /api/check and /api/info ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_check_returns_probe(client, monkeypatch):
    probe = ProbeResult(status=ProbeStatus.PRIVATE, message="This video is private or requires authentication")
    monkeypatch.setattr(main, "prober", StubProber(probe=probe))

    resp = await client.post("/api/check", json={"url": "https://youtu.be/abc"})

    assert resp.status_code == 200
    assert resp.json() == {"status": "private", "message": "This video is private or requires authentication"}


@pytest.mark.asyncio
async def test_check_requires_url(client):
    resp = await client.post("/api/check", json={"url": "   "})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_info(client, monkeypatch):
    info = VideoInfo(title="Clip", duration=12.5, uploader="me", platform="Youtube")
    monkeypatch.setattr(main, "prober", StubProber(info=info))
    resp = await client.post("/api/info", json={"url": "https://youtu.be/abc"})
    assert resp.status_code == 200
    assert resp.json()["title"] == "Clip"
    assert resp.json()["duration"] == 12.5


@pytest.mark.asyncio
async def test_info_not_found(client, monkeypatch):
    monkeypatch.setattr(main, "prober", StubProber(info=None))
    resp = await client.post("/api/info", json={"url": "https://youtu.be/abc"})
    assert resp.status_code == 404
    assert resp.json()["message"] == "Could not get video info"


# ─── /api/cookies ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cookie_submit_then_status(client, store, clock):
    resp = await client.post("/api/cookies", json={"platform": "instagram", "cookies": "sessionid=abc"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["platform"] == "instagram"
    assert body["expiresIn"] == "90 days"

    clock.now = FIXED_NOW + timedelta(days=10)
    status = (await client.get("/api/cookies/status")).json()

    assert status["success"] is True
    assert status["cookies"]["instagram"]["synced"] is True
    assert status["cookies"]["instagram"]["expired"] is False
    assert status["cookies"]["instagram"]["daysRemaining"] == 80
    assert status["cookies"]["twitter"] == {"synced": False}


@pytest.mark.asyncio
async def test_cookie_resubmit_replaces(client, store):
    await client.post("/api/cookies", json={"platform": "twitter", "cookies": "auth_token=one"})
    await client.post("/api/cookies", json={"platform": "twitter", "cookies": "auth_token=two"})
    assert store.get(detect_platform("https://x.com")).material == "auth_token=two"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload,message", [
    ({"platform": "instagram"}, "Missing platform or cookies"),
    ({"cookies": "a=b"}, "Missing platform or cookies"),
    ({"platform": "instagram", "cookies": "  "}, "Missing platform or cookies"),
    ({"platform": "tiktok", "cookies": "a=b"}, "Invalid platform. Supported: instagram, twitter, youtube"),
    ({"platform": "myspace", "cookies": "a=b"}, "Invalid platform. Supported: instagram, twitter, youtube"),
])
async def test_cookie_submit_rejects(client, store, payload, message):
    resp = await client.post("/api/cookies", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": message}


# ─── /api/file ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_file_served_then_deleted(client, served):
    path = write_bytes(served.temp_dir / "clip.mp4", MIN_BYTES)

    resp = await client.get("/api/file/clip.mp4")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "video/mp4"
    assert resp.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert len(resp.content) == MIN_BYTES
    assert not path.exists()


@pytest.mark.asyncio
async def test_file_not_found(client, served):
    resp = await client.get("/api/file/missing.mp4")
    assert resp.status_code == 404
    assert resp.json()["message"] == "File not found"


@pytest.mark.asyncio
@pytest.mark.parametrize("size,message", [
    (0, "File is empty (0KB) - download failed"),
    (2048, "File is too small - likely corrupted"),
])
async def test_file_rejects_bad_artifacts(client, served, size, message):
    path = write_bytes(served.temp_dir / "bad.mp4", size)
    resp = await client.get("/api/file/bad.mp4")
    assert resp.status_code == 400
    assert resp.json()["message"] == message
    assert not path.exists()


# ─── /api/health ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_health(client, store, served):
    store.submit(detect_platform("https://youtube.com"), "SID=1")
    resp = await client.get("/api/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["version"] == config.VERSION
    assert set(body["stats"]) == {"totalDownloads", "activeDownloads", "failedDownloads", "diskUsagePercent"}
    assert body["cookies"]["youtube"]["synced"] is True


@pytest.mark.asyncio
async def test_check_with_nul_byte_url_reports_unknown(client, monkeypatch):
    monkeypatch.setattr(main, "prober", StatusProber(binary=sys.executable, timeout=5))
    resp = await client.post("/api/check", json={"url": "https://youtu.be/abc\u0000x"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "unknown"
