"""
Shared fixtures and helpers for the shortsdl tests.

Pipeline and API tests run against FakeCatalogClient, an in-memory stand-in
for the yt-dlp catalog provider that records every call it receives. Tests
marked ``live`` talk to YouTube and skip when it is unreachable.
"""

import os
import pathlib
import sys

import pytest

# ─── Path + .env loading (must happen before any shortsdl import) ────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

# Load .env so YTDLP_COOKIES_B64, YTDLP_PROXY etc. are available to live tests
_env_file = _ROOT / ".env"
if _env_file.exists():
    for _line in _env_file.read_text().splitlines():
        _line = _line.strip()
        if _line and not _line.startswith("#") and "=" in _line:
            _k, _v = _line.split("=", 1)
            os.environ.setdefault(_k.strip(), _v.strip())

from shortsdl.models import (  # noqa: E402
    Catalog,
    ClientPersona,
    FormatSelection,
    ResolvedUrl,
    StreamCandidate,
)

# ─── Constants ───────────────────────────────────────────────────────────────

TEST_VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
TEST_VIDEO_ID = "dQw4w9WgXcQ"
CDN = "https://cdn.example.test"


# ─── Fakes ───────────────────────────────────────────────────────────────────

class FakeBody:
    """Async iterable body; Exception items are raised when reached."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    async def aclose(self):
        self.closed = True


class FakeCatalogClient:
    """
    In-memory catalog provider.

    Args:
        catalogs: persona -> Catalog, or an error string for a failing persona.
        resolved: persona -> ResolvedUrl, or an error string.
        streams:  url -> list of chunks (FakeBody), or an error string.
    """

    def __init__(self, catalogs=None, resolved=None, streams=None):
        self.catalogs = catalogs or {}
        self.resolved = resolved or {}
        self.streams = streams or {}
        self.calls = []
        self.bodies = {}

    async def get_catalog(self, video_id, persona):
        self.calls.append(("catalog", video_id, persona))
        entry = self.catalogs.get(persona)
        if entry is None:
            return None, f"no catalog for {persona.value}"
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, str):
            return None, entry
        return entry, None

    async def resolve_format(self, video_id, persona, format_spec):
        self.calls.append(("resolve", video_id, persona, format_spec))
        entry = self.resolved.get(persona)
        if entry is None:
            return None, "Requested format is not available"
        if isinstance(entry, str):
            return None, entry
        return entry, None

    async def open_stream(self, url, headers=None):
        self.calls.append(("open", url, headers))
        entry = self.streams.get(url)
        if entry is None:
            return None, "HTTP 403"
        if isinstance(entry, str):
            return None, entry
        body = FakeBody(entry)
        self.bodies[url] = body
        return body, None

    def calls_of(self, kind):
        return [c for c in self.calls if c[0] == kind]


def combined(height, ext="mp4", url=None, format_id=None):
    return StreamCandidate(
        has_audio=True,
        has_video=True,
        height=height,
        container_mime=f"video/{ext}",
        direct_url=url,
        format_selector=format_id or f"c{height}{ext}",
    )


def video_only(height, ext="mp4", url=None, format_id=None):
    return StreamCandidate(
        has_audio=False,
        has_video=True,
        height=height,
        container_mime=f"video/{ext}",
        direct_url=url,
        format_selector=format_id or f"v{height}{ext}",
    )


def audio_only(format_id="140"):
    return StreamCandidate(
        has_audio=True,
        has_video=False,
        container_mime="audio/mp4",
        format_selector=format_id,
    )


def catalog(persona, *candidates, title="Test Video"):
    return Catalog(persona=persona, title=title, candidates=list(candidates))


def resolved(path, ext="mp4"):
    return ResolvedUrl(url=f"{CDN}/{path}", http_headers={"User-Agent": "yt-dlp"}, container_mime=f"video/{ext}")


# ─── Per-test fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def selection_720():
    """A combined 720p MP4 selection from the default persona."""
    return FormatSelection(
        candidate=combined(720, url=f"{CDN}/direct-720.mp4", format_id="22"),
        video_only=False,
        persona=ClientPersona.DEFAULT,
        title="Test Video",
    )
