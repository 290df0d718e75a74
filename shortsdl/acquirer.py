"""
Stream acquisition for a selected format, with automatic fallback.

Strategy order (tried sequentially until one yields a byte stream):
  1. direct-url              — GET the candidate's own URL with a browser user-agent
  2. deciphered              — let yt-dlp re-resolve (and descramble) the chosen format id
                                under the persona it came from
  3. raw <persona> <type>    — generic best-stream lookups that ignore the chosen candidate:
                                ios combined, ios video-only, android combined, android video-only

Each strategy returns a DownloadAttemptResult; nothing here raises for
upstream failures.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Tuple

import httpx

from .catalog import USER_AGENT, build_format_spec
from .models import ClientPersona, DownloadAttemptResult, FormatSelection, StreamType

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024

RAW_FALLBACK_PERSONAS = (ClientPersona.IOS, ClientPersona.ANDROID)
RAW_FALLBACK_TYPES = (StreamType.COMBINED, StreamType.VIDEO_ONLY)


class ByteStream:
    """
    Async byte iterator with an explicit release hook.

    The relay iterates it exactly once and always calls ``aclose()``.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._chunks = chunks
        self._close = close
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._close is not None:
            await self._close()

    @classmethod
    def adapt(cls, source: Any) -> "ByteStream":
        """Wrap an httpx streaming response or any async iterable of bytes."""
        if isinstance(source, ByteStream):
            return source
        if isinstance(source, httpx.Response):
            if source.headers.get("content-length") == "0":
                raise ValueError("response has an empty body")
            return cls(source.aiter_bytes(STREAM_CHUNK_SIZE), source.aclose)
        if hasattr(source, "__aiter__"):
            return cls(source.__aiter__(), getattr(source, "aclose", None))
        raise TypeError(f"cannot stream from {type(source).__name__}")


class StreamAcquirer:
    """Turns a FormatSelection into an open byte stream."""

    def __init__(self, client):
        self.client = client

    # =========================================================================
    # INDIVIDUAL STRATEGY IMPLEMENTATIONS
    # =========================================================================

    async def _open(self, url: str, headers: dict) -> Tuple[Optional[ByteStream], Optional[str]]:
        response, error = await self.client.open_stream(url, headers)
        if error:
            return None, error
        try:
            return ByteStream.adapt(response), None
        except (TypeError, ValueError) as e:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()
            return None, f"cannot adapt response body: {e}"

    async def _run_direct_strategy(self, selection: FormatSelection, video_id: str) -> DownloadAttemptResult:
        """GET the candidate's direct URL."""
        candidate = selection.candidate
        if not candidate.direct_url:
            return DownloadAttemptResult(success=False, error="candidate has no direct URL")

        stream, error = await self._open(candidate.direct_url, {"User-Agent": USER_AGENT})
        if error:
            return DownloadAttemptResult(success=False, error=error)
        return DownloadAttemptResult(
            success=True,
            byte_stream=stream,
            used_video_only=selection.video_only,
            mime_type=candidate.container_mime,
        )

    async def _run_deciphered_strategy(self, selection: FormatSelection, video_id: str) -> DownloadAttemptResult:
        """Ask yt-dlp for a descrambled URL of the chosen format id."""
        candidate = selection.candidate
        stream_type = StreamType.VIDEO_ONLY if selection.video_only else StreamType.COMBINED
        format_spec = build_format_spec(
            stream_type,
            prefer_mp4=candidate.is_mp4,
            format_selector=candidate.format_selector,
        )

        resolved, error = await self.client.resolve_format(video_id, selection.persona, format_spec)
        if error:
            return DownloadAttemptResult(success=False, error=error)

        stream, error = await self._open(resolved.url, resolved.http_headers)
        if error:
            return DownloadAttemptResult(success=False, error=error)
        return DownloadAttemptResult(
            success=True,
            byte_stream=stream,
            used_video_only=selection.video_only,
            mime_type=resolved.container_mime or candidate.container_mime,
        )

    async def _run_raw_strategy(
        self,
        video_id: str,
        persona: ClientPersona,
        stream_type: StreamType,
    ) -> DownloadAttemptResult:
        """Resolve a generic best stream for ``persona`` without the chosen candidate."""
        format_spec = build_format_spec(stream_type, prefer_mp4=True)

        resolved, error = await self.client.resolve_format(video_id, persona, format_spec)
        if error:
            return DownloadAttemptResult(success=False, error=error)

        stream, error = await self._open(resolved.url, resolved.http_headers)
        if error:
            return DownloadAttemptResult(success=False, error=error)
        return DownloadAttemptResult(
            success=True,
            byte_stream=stream,
            used_video_only=stream_type == StreamType.VIDEO_ONLY,
            mime_type=resolved.container_mime,
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def _build_strategy_list(
        self,
        selection: FormatSelection,
        video_id: str,
    ) -> List[Tuple[str, Callable[[], Awaitable[DownloadAttemptResult]]]]:
        strategies = [
            ("direct-url", lambda: self._run_direct_strategy(selection, video_id)),
            ("deciphered", lambda: self._run_deciphered_strategy(selection, video_id)),
        ]
        for persona in RAW_FALLBACK_PERSONAS:
            for stream_type in RAW_FALLBACK_TYPES:
                strategies.append((
                    f"raw {persona.value} {stream_type.value}",
                    lambda p=persona, t=stream_type: self._run_raw_strategy(video_id, p, t),
                ))
        return strategies

    async def acquire(self, selection: FormatSelection, video_id: str) -> DownloadAttemptResult:
        """
        Open a byte stream for ``selection``.

        Returns the first successful DownloadAttemptResult, or a failed one
        carrying every strategy error once all strategies are exhausted.
        """
        strategies = self._build_strategy_list(selection, video_id)
        total = len(strategies)
        all_errors: List[str] = []

        for idx, (name, run) in enumerate(strategies, 1):
            try:
                result = await run()
            except Exception as e:
                logger.exception(f"💥 Unexpected exception in acquisition strategy {name}")
                result = DownloadAttemptResult(success=False, error=f"Unexpected exception in strategy: {e}")

            if result.success and result.byte_stream is not None:
                logger.info(f"✅ Stream strategy {idx}/{total} ({name}) succeeded for {video_id}")
                result.strategy = name
                return result

            error_summary = result.error or "unknown error"
            logger.warning(f"⚠️ Stream strategy {idx}/{total} ({name}) failed: {error_summary[:120]}")
            all_errors.append(f"[{name}]: {error_summary[:200]}")

        logger.error(f"❌ All {total} stream strategies failed for {video_id}")
        return DownloadAttemptResult(success=False, error="; ".join(all_errors))
