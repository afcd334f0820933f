"""
Shared fixtures and fakes for the clipfetch tests.

Nothing here touches the network or spawns yt-dlp/curl: HTTP collaborators
are served by httpx.MockTransport and subprocesses by FakeRunner.
"""

import os
import pathlib
import sys
import tempfile
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

import pytest

# ─── Path + env (must happen before any clipfetch import) ───────────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

os.environ.setdefault("TEMP_DIR", tempfile.mkdtemp(prefix="clipfetch-test-"))
os.environ.setdefault("BACKEND_URL", "http://backend.test/api")
os.environ.setdefault("BACKEND_URL_CANDIDATES", "http://backend.test/api")
os.environ.setdefault("RESOLVER_URL", "http://resolver.test/")

from clipfetch.process import ProcessResult  # noqa: E402
from clipfetch.storage import StorageManager  # noqa: E402
from clipfetch.validator import ArtifactValidator  # noqa: E402

# ─── Constants ───────────────────────────────────────────────────────────────

MIN_BYTES = 10 * 1024
VIDEO_BYTES = 12 * 1024 * 1024
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for credential expiry tests."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeRunner:
    """
    Stands in for run_process. Each call pops the next scripted result;
    an optional side effect runs first (e.g. to write the output file).
    """

    def __init__(self, *results: ProcessResult, on_call: Optional[Callable[[List[str]], None]] = None):
        self.results = list(results) or [ProcessResult(returncode=0)]
        self.on_call = on_call
        self.calls: List[List[str]] = []
        self.timeouts: List[float] = []

    async def __call__(self, cmd: Sequence[str], timeout: float) -> ProcessResult:
        cmd = list(cmd)
        self.calls.append(cmd)
        self.timeouts.append(timeout)
        if self.on_call is not None:
            self.on_call(cmd)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


def output_path_from(cmd: List[str]) -> pathlib.Path:
    """The -o argument of a yt-dlp or curl command line."""
    return pathlib.Path(cmd[cmd.index("-o") + 1])


def write_bytes(path: pathlib.Path, size: int) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def storage(tmp_path):
    """StorageManager rooted in a per-test temp dir."""
    return StorageManager(temp_dir=tmp_path / "downloads", file_ttl=60, cleanup_interval=60)


@pytest.fixture
def validator():
    return ArtifactValidator(min_bytes=MIN_BYTES)


@pytest.fixture
def clock():
    return FakeClock()
