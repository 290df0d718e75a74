"""
Relay a resolved byte stream to the caller as an MP4 attachment.
"""

import asyncio
import logging
import re
from typing import Callable, Optional

from fastapi.responses import JSONResponse, StreamingResponse
from starlette.responses import Response

from .models import ERROR_MESSAGES, ErrorBody, ErrorCode, ResolvedTarget

logger = logging.getLogger(__name__)

FALLBACK_FILENAME = "short"
MAX_FILENAME_LENGTH = 60
DEFAULT_MIME = "video/mp4"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")
_REPEATED_UNDERSCORES = re.compile(r"_+")


class MidStreamError(Exception):
    """The upstream stream broke after the response headers were sent."""


def sanitize_filename(title: Optional[str]) -> str:
    """
    Turn a video title into a safe filename stem.

    Anything outside [A-Za-z0-9_-] becomes a single underscore, edge
    underscores are trimmed and the result is capped at 60 characters.
    Sanitizing an already sanitized name returns it unchanged.
    """
    name = _UNSAFE_CHARS.sub("_", title or FALLBACK_FILENAME)
    name = _REPEATED_UNDERSCORES.sub("_", name).strip("_")
    name = name[:MAX_FILENAME_LENGTH].strip("_")
    return name or FALLBACK_FILENAME


def build_headers(target: ResolvedTarget) -> dict:
    return {
        "Content-Type": target.mime_type or DEFAULT_MIME,
        "Content-Disposition": f'attachment; filename="{target.suggested_filename}.mp4"',
        "Cache-Control": "no-store",
        "Access-Control-Expose-Headers": "Content-Disposition",
    }


def error_response(code: ErrorCode, status_code: int = 500, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorBody(error=ERROR_MESSAGES[code]).model_dump(),
        headers=headers,
    )


async def relay(target: ResolvedTarget, on_close: Optional[Callable[[], None]] = None) -> Response:
    """
    Build the streaming response for ``target``.

    The first chunk is read before any header is committed, so an upstream
    failure at that point still becomes a JSON 500. Later failures abort the
    connection by raising MidStreamError from the body iterator.

    ``on_close`` runs once the streamed body ends for any reason; it is not
    called when the JSON error response is returned instead.
    """
    stream = target.byte_stream
    try:
        first_chunk = await stream.__anext__()
    except StopAsyncIteration:
        first_chunk = b""
    except Exception as e:
        logger.error(f"❌ Download stream error before headers were sent: {e}")
        await stream.aclose()
        return error_response(ErrorCode.MID_STREAM_ERROR)

    async def body():
        sent = len(first_chunk)
        try:
            if first_chunk:
                yield first_chunk
            async for chunk in stream:
                sent += len(chunk)
                yield chunk
            logger.info(f"📤 Relayed {sent / 1024 / 1024:.2f} MB ({target.suggested_filename}.mp4)")
        except asyncio.CancelledError:
            logger.warning(f"🔌 Client disconnected after {sent / 1024 / 1024:.2f} MB")
            raise
        except Exception as e:
            logger.error(f"❌ Download stream error after {sent} bytes, aborting connection: {e}")
            raise MidStreamError(str(e)) from e
        finally:
            if on_close is not None:
                on_close()
            # Must still run when the request task is being cancelled
            await asyncio.shield(stream.aclose())

    if target.video_only:
        logger.info(f"🎞️ Serving video-only stream for {target.suggested_filename}")

    return StreamingResponse(body(), headers=build_headers(target))
