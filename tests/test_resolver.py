"""
Tests for the resolver backend: API reply handling and the curl fetch.
"""

import json

import httpx
import pytest

from clipfetch.models import DownloadMethod, ReplyKind
from clipfetch.process import ProcessResult
from clipfetch.resolver import ResolverAdapter, resolver_extension

from conftest import VIDEO_BYTES, FakeRunner, output_path_from, write_bytes

URL = "https://www.tiktok.com/@someone/video/123"


def adapter_for(storage, validator, handler, runner=None):
    return ResolverAdapter(
        storage,
        validator,
        api_url="http://resolver.test/",
        runner=runner or FakeRunner(),
        curl_binary="curl",
        fetch_timeout=300,
        transport=httpx.MockTransport(handler),
    )


def tunnel(filename="clip.mp4"):
    def handler(request):
        assert json.loads(request.content) == {"url": URL}
        return httpx.Response(200, json={
            "status": "tunnel",
            "url": "http://resolver.test/tunnel?id=1",
            "filename": filename,
        })
    return handler


def curl_writes(size):
    return lambda cmd: write_bytes(output_path_from(cmd), size)


@pytest.mark.asyncio
async def test_success(storage, validator):
    runner = FakeRunner(on_call=curl_writes(VIDEO_BYTES))
    result = await adapter_for(storage, validator, tunnel(), runner).download(URL)

    assert result.succeeded
    assert result.method == DownloadMethod.RESOLVER
    assert result.artifact_path.parent == storage.temp_dir
    assert result.artifact_path.name.startswith("resolver_")
    assert result.artifact_path.suffix == ".mp4"
    assert result.artifact_size_bytes == VIDEO_BYTES
    assert result.metadata is None

    cmd = runner.calls[0]
    assert cmd[0] == "curl"
    assert cmd[-1] == "http://resolver.test/tunnel?id=1"
    assert cmd[cmd.index("--max-time") + 1] == "300"


@pytest.mark.asyncio
async def test_same_video_twice_gets_separate_artifacts(storage, validator):
    runner = FakeRunner(on_call=curl_writes(VIDEO_BYTES))
    adapter = adapter_for(storage, validator, tunnel("youtube_abc_480p.mp4"), runner)

    first = await adapter.download(URL)
    second = await adapter.download(URL)

    assert first.succeeded and second.succeeded
    assert first.artifact_path != second.artifact_path
    assert first.artifact_path.exists() and second.artifact_path.exists()


@pytest.mark.asyncio
async def test_extension_follows_resolver_filename(storage, validator):
    runner = FakeRunner(on_call=curl_writes(VIDEO_BYTES))
    result = await adapter_for(storage, validator, tunnel("../we ird/clip.WEBM"), runner).download(URL)
    assert result.artifact_path.parent == storage.temp_dir
    assert result.artifact_path.suffix == ".webm"


@pytest.mark.parametrize("filename,ext", [
    ("clip.mp4", "mp4"),
    ("clip.webm", "webm"),
    ("clip", "mp4"),
    ("...", "mp4"),
    ("", "mp4"),
    (None, "mp4"),
])
def test_resolver_extension(filename, ext):
    assert resolver_extension(filename) == ext


@pytest.mark.asyncio
async def test_error_status_carries_code(storage, validator):
    def handler(request):
        return httpx.Response(400, json={"status": "error", "error": {"code": "error.api.fetch.empty"}})

    runner = FakeRunner()
    result = await adapter_for(storage, validator, handler, runner).download(URL)

    assert not result.succeeded
    assert result.error_detail == "error.api.fetch.empty"
    assert runner.calls == []


@pytest.mark.asyncio
async def test_no_location(storage, validator):
    def handler(request):
        return httpx.Response(200, json={"status": "picker", "picker": []})

    result = await adapter_for(storage, validator, handler).download(URL)
    assert result.error_detail == "no location returned"


@pytest.mark.asyncio
async def test_malformed_reply(storage, validator):
    adapter = adapter_for(storage, validator, lambda request: httpx.Response(502, text="Bad Gateway"))
    reply = await adapter.resolve(URL)
    assert reply.kind == ReplyKind.MALFORMED

    result = await adapter.download(URL)
    assert not result.succeeded
    assert "invalid JSON" in result.error_detail


@pytest.mark.asyncio
async def test_network_error(storage, validator):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = adapter_for(storage, validator, handler)
    reply = await adapter.resolve(URL)
    assert reply.kind == ReplyKind.NETWORK_ERROR

    result = await adapter.download(URL)
    assert not result.succeeded


@pytest.mark.asyncio
async def test_curl_failure_removes_partial_file(storage, validator):
    runner = FakeRunner(
        ProcessResult(returncode=22, stderr="curl: (22) The requested URL returned error: 404"),
        on_call=curl_writes(500),
    )
    result = await adapter_for(storage, validator, tunnel(), runner).download(URL)

    assert not result.succeeded
    assert result.error_detail.startswith("curl failed (code 22)")
    assert list(storage.temp_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_curl_timeout(storage, validator):
    runner = FakeRunner(ProcessResult(returncode=-1, timed_out=True))
    result = await adapter_for(storage, validator, tunnel(), runner).download(URL)
    assert result.error_detail == "Resolver download timed out"


@pytest.mark.asyncio
async def test_small_file_rejected(storage, validator):
    runner = FakeRunner(on_call=curl_writes(2 * 1024))
    result = await adapter_for(storage, validator, tunnel(), runner).download(URL)

    assert not result.succeeded
    assert "too small" in result.error_detail
    assert list(storage.temp_dir.iterdir()) == []
