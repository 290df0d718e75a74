"""
Format catalog provider backed by yt-dlp.

yt-dlp does all the upstream work (client persona emulation, signature and
n-parameter descrambling); this module only asks it for format lists and
playable URLs and opens those URLs with a shared httpx client.

Every public coroutine returns a ``(value, error)`` tuple. ``error`` is a
human-readable string and ``value`` is None whenever ``error`` is set, so
callers never see yt-dlp or httpx exceptions.

Environment variables:
  YTDLP_COOKIES_B64        — Base64-encoded Netscape cookies.txt for authenticated extraction
                             Encode your cookies file with: base64 -w 0 cookies.txt
  YTDLP_COOKIES_PATH       — Where the decoded cookies file is written (default /tmp/ytdlp_cookies.txt)
  YTDLP_PROXY              — HTTP/SOCKS proxy URL used by yt-dlp and for stream fetches
  YTDLP_PO_TOKEN           — YouTube Proof-of-Origin token (advanced, optional)
  YTDLP_VISITOR_DATA       — YouTube visitor data (paired with PO token)
  UPSTREAM_TIMEOUT_SECONDS — Optional timeout for stream fetches; unset means no timeout
"""

import asyncio
import base64
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import yt_dlp

from .models import Catalog, ClientPersona, ResolvedUrl, StreamCandidate, StreamType

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
    'AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/120.0.0.0 Safari/537.36'
)

COOKIES_PATH = os.getenv("YTDLP_COOKIES_PATH", "/tmp/ytdlp_cookies.txt")
_timeout_env = os.getenv("UPSTREAM_TIMEOUT_SECONDS", "").strip()
UPSTREAM_TIMEOUT_SECONDS: Optional[float] = float(_timeout_env) if _timeout_env else None

# Container extension -> MIME type
CONTAINER_MIME = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "3gp": "video/3gpp",
    "mov": "video/quicktime",
    "m4a": "audio/mp4",
}


def container_mime(ext: Optional[str]) -> str:
    if not ext:
        return "video/mp4"
    return CONTAINER_MIME.get(ext, f"video/{ext}")


def classify_upstream_error(error_msg: str) -> str:
    """Reduce an upstream error string to a short reason for log lines."""
    error_lower = error_msg.lower()

    if any(kw in error_lower for kw in ["private", "unavailable", "deleted", "removed", "geo-block"]):
        return "video unavailable"
    if any(kw in error_lower for kw in ["sign in", "bot", "confirm you"]):
        return "bot detection"
    if "429" in error_lower or "rate limit" in error_lower or "too many requests" in error_lower:
        return "rate limited"
    if "timeout" in error_lower or "timed out" in error_lower:
        return "timed out"
    if any(kw in error_lower for kw in ["network", "connection", "resolve", "unreachable"]):
        return "network error"
    return "upstream error"


def build_format_spec(
    stream_type: StreamType,
    prefer_mp4: bool = True,
    format_selector: Optional[str] = None,
) -> str:
    """
    Build a yt-dlp format expression for a single progressive stream.

    With ``format_selector`` the exact format is asked for first; the generic
    expressions that follow keep the retrieval mode (combined or video-only).
    Manifest and merged formats are excluded, only plain https streams qualify.
    """
    if stream_type == StreamType.COMBINED:
        base = "best[vcodec!=none][acodec!=none][protocol=https]"
    else:
        base = "bestvideo[vcodec!=none][acodec=none][protocol=https]"

    alternatives: List[str] = []
    if format_selector:
        alternatives.append(format_selector)
    if prefer_mp4:
        alternatives.append(base + "[ext=mp4]")
    alternatives.append(base)
    return "/".join(alternatives)


def _candidate_from_format(fmt: Dict[str, Any]) -> Optional[StreamCandidate]:
    """Build a StreamCandidate from a yt-dlp format dict (None for unusable entries)."""
    format_id = fmt.get("format_id")
    if not format_id:
        return None

    vcodec = fmt.get("vcodec")
    acodec = fmt.get("acodec")
    height = fmt.get("height")

    has_video = vcodec != "none" and (vcodec is not None or bool(height))
    has_audio = acodec not in (None, "none")

    direct_url = fmt.get("url") if fmt.get("protocol") in ("http", "https") else None

    return StreamCandidate(
        has_audio=has_audio,
        has_video=has_video,
        height=int(height) if height else None,
        container_mime=container_mime(fmt.get("ext")),
        direct_url=direct_url,
        format_selector=str(format_id),
    )


class YtDlpCatalogClient:
    """yt-dlp backed catalog provider with a shared httpx client for stream fetches."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.cookies_file: Optional[str] = None
        self.po_token: Optional[str] = os.getenv('YTDLP_PO_TOKEN')
        self.visitor_data: Optional[str] = os.getenv('YTDLP_VISITOR_DATA')
        self.proxy: Optional[str] = os.getenv('YTDLP_PROXY')
        self._setup_cookies()
        if self.proxy:
            logger.info(f"✅ Proxy configured: {self.proxy.split('@')[-1] if '@' in self.proxy else self.proxy}")

        self.http = http_client or httpx.AsyncClient(
            timeout=UPSTREAM_TIMEOUT_SECONDS,
            follow_redirects=True,
            proxy=self.proxy,
        )

    # =========================================================================
    # SETUP HELPERS
    # =========================================================================

    def _setup_cookies(self) -> None:
        """Load YouTube cookies from YTDLP_COOKIES_B64 environment variable."""
        cookies_b64 = os.getenv('YTDLP_COOKIES_B64', '').strip()
        if not cookies_b64:
            logger.info("🍪 Running without cookies (set YTDLP_COOKIES_B64 to enable)")
            return
        try:
            cookies_bytes = base64.b64decode(cookies_b64)
            with open(COOKIES_PATH, 'wb') as f:
                f.write(cookies_bytes)
            self.cookies_file = COOKIES_PATH
            logger.info("✅ YouTube cookies loaded successfully")
        except Exception as e:
            logger.error(f"❌ Failed to load YouTube cookies: {e}")

    def _build_ytdlp_opts(
        self,
        persona: ClientPersona,
        format_spec: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build a yt-dlp options dict for one persona."""
        extractor_args: Dict[str, Any] = {
            'player_client': [persona.value],
        }
        if not self.cookies_file:
            extractor_args['player_skip'] = ['webpage']
        if self.po_token and self.visitor_data:
            extractor_args['po_token'] = [f'web+{self.po_token}']
            extractor_args['visitor_data'] = [self.visitor_data]

        opts: Dict[str, Any] = {
            'user_agent': USER_AGENT,
            'extractor_args': {'youtube': extractor_args},
            'http_headers': {
                'Accept-Language': 'en-US,en;q=0.9',
            },
            'quiet': True,
            'no_warnings': True,
            'noplaylist': True,
            'skip_download': True,
            'retries': 2,
        }

        if self.cookies_file:
            opts['cookiefile'] = self.cookies_file
        if format_spec:
            opts['format'] = format_spec
        if self.proxy:
            opts['proxy'] = self.proxy

        return opts

    async def _extract_info(
        self,
        video_id: str,
        opts: Dict[str, Any],
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """Run yt-dlp metadata extraction off the event loop."""
        video_url = WATCH_URL.format(video_id=video_id)

        def _extract():
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(video_url, download=False)

        loop = asyncio.get_event_loop()
        try:
            info = await loop.run_in_executor(None, _extract)
        except yt_dlp.utils.DownloadError as e:
            return None, str(e)
        except Exception as e:
            return None, f"Unexpected error: {e}"

        if not info:
            return None, "yt-dlp returned no info"
        return info, None

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def get_catalog(
        self,
        video_id: str,
        persona: ClientPersona,
    ) -> Tuple[Optional[Catalog], Optional[str]]:
        """List the stream candidates visible to ``persona``."""
        opts = self._build_ytdlp_opts(persona)
        # Listing only; no format has to be selectable
        opts['ignore_no_formats_error'] = True

        info, error = await self._extract_info(video_id, opts)
        if error:
            return None, error

        candidates = []
        for fmt in info.get("formats") or []:
            candidate = _candidate_from_format(fmt)
            if candidate is not None:
                candidates.append(candidate)

        return Catalog(persona=persona, title=info.get("title"), candidates=candidates), None

    async def resolve_format(
        self,
        video_id: str,
        persona: ClientPersona,
        format_spec: str,
    ) -> Tuple[Optional[ResolvedUrl], Optional[str]]:
        """Let yt-dlp pick (and descramble) one format and return its playable URL."""
        info, error = await self._extract_info(video_id, self._build_ytdlp_opts(persona, format_spec))
        if error:
            return None, error

        downloads = info.get("requested_downloads") or [info]
        chosen = downloads[0]
        if chosen.get("requested_formats"):
            return None, "format resolved to a merged download"

        url = chosen.get("url")
        if not url:
            return None, "resolved format has no URL"

        return ResolvedUrl(
            url=url,
            http_headers=dict(chosen.get("http_headers") or {}),
            container_mime=container_mime(chosen.get("ext")),
        ), None

    async def open_stream(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[Optional[httpx.Response], Optional[str]]:
        """GET ``url`` without reading the body; the caller owns the returned response."""
        request = self.http.build_request("GET", url, headers=headers)
        try:
            response = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            return None, f"request failed: {e}"

        if not response.is_success:
            await response.aclose()
            return None, f"HTTP {response.status_code}"
        return response, None

    async def aclose(self) -> None:
        await self.http.aclose()


class LazyCatalogClient:
    """
    Process-wide catalog client, created on first use.

    The first caller schedules one initialization task and every concurrent
    caller awaits that same task. A failed initialization is dropped so the
    next request can try again.
    """

    def __init__(self, factory: Callable[[], Any] = YtDlpCatalogClient):
        self._factory = factory
        self._init_task: Optional[asyncio.Task] = None

    async def _create(self):
        client = self._factory()
        logger.info(f"📚 Catalog client initialized ({type(client).__name__})")
        return client

    async def get(self):
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._create())
        task = self._init_task
        try:
            # A cancelled request must not cancel initialization for the others
            return await asyncio.shield(task)
        except Exception:
            if self._init_task is task and task.done():
                self._init_task = None
            raise

    @property
    def initialized(self) -> bool:
        task = self._init_task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    async def aclose(self) -> None:
        if self.initialized:
            await self._init_task.result().aclose()
        self._init_task = None


# Global singleton
catalog_client = LazyCatalogClient()
