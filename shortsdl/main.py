"""
FastAPI download service
Turns a pasted YouTube / Shorts link into a streamed MP4 download
"""

import os
import time
import logging
from contextlib import asynccontextmanager
from urllib.parse import unquote

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response
import yt_dlp

from .acquirer import StreamAcquirer
from .catalog import catalog_client
from .extractor import extract_video_id
from .models import (
    ERROR_MESSAGES,
    MISSING_URL_MESSAGE,
    NOT_FOUND_MESSAGE,
    ErrorBody,
    ErrorCode,
    HealthResponse,
    HealthStats,
    ResolvedTarget,
)
from .relay import error_response, relay, sanitize_filename
from .resolver import FormatResolver

# Logging configuration
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# App metadata
VERSION = "1.0.0"
start_time = time.time()

# Statistics tracking
stats = {
    "total_downloads": 0,
    "active_downloads": 0,
    "failed_downloads": 0,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown tasks"""
    # Startup
    logger.info("🚀 Starting shorts download service...")
    logger.info(f"Version: {VERSION}")
    logger.info(f"yt-dlp version: {yt_dlp.version.__version__}")

    cookies_configured = bool(os.getenv('YTDLP_COOKIES_B64'))
    proxy_configured = bool(os.getenv('YTDLP_PROXY'))
    logger.info(f"🍪 YouTube cookies: {'configured' if cookies_configured else 'not configured'}")
    logger.info(f"🌐 Proxy: {'configured' if proxy_configured else 'not set'}")

    yield

    # Shutdown
    logger.info("Shutting down shorts download service...")
    await catalog_client.aclose()


# Create FastAPI app
app = FastAPI(
    title="Shorts Download Service",
    description="Streams YouTube videos and Shorts as MP4 downloads",
    version=VERSION,
    lifespan=lifespan,
)

# CORS configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


def get_catalog_handle():
    """Lazily created catalog client shared by all requests."""
    return catalog_client


# ============================================================================
# API ENDPOINTS
# ============================================================================


def _decode_url_param(value: str) -> str:
    """Percent-decode once more; malformed escapes keep the raw value."""
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


@app.get("/api/download")
async def download_video(request: Request, catalog=Depends(get_catalog_handle)) -> Response:
    """
    Stream a YouTube video as an MP4 attachment

    **Flow:**
    1. Extract the video id from the `url` query parameter
    2. Find the best combined (or video-only) format across client personas
    3. Open a byte stream for it (direct URL, deciphered URL, raw fallbacks)
    4. Relay the bytes with attachment headers
    """
    values = request.query_params.getlist("url")
    if len(values) != 1 or not values[0]:
        logger.warning(f"⚠️ Rejected request with {len(values)} url parameter(s)")
        return JSONResponse(status_code=400, content=ErrorBody(error=MISSING_URL_MESSAGE).model_dump())

    video_url = _decode_url_param(values[0])
    video_id = extract_video_id(video_url)
    if not video_id:
        logger.warning(f"⚠️ Not a recognised video link: {video_url[:200]}")
        return error_response(ErrorCode.INVALID_INPUT, status_code=400)

    logger.info(f"📥 Download request: {video_url} (video_id={video_id})")

    # Update stats
    stats["active_downloads"] += 1
    streaming = False

    def _transfer_finished():
        stats["active_downloads"] -= 1

    try:
        client = await catalog.get()
        selection = await FormatResolver(client).resolve(video_id)
        if selection is None:
            stats["failed_downloads"] += 1
            return error_response(ErrorCode.NO_FORMAT_FOUND)

        attempt = await StreamAcquirer(client).acquire(selection, video_id)
        if not attempt.success or attempt.byte_stream is None:
            stats["failed_downloads"] += 1
            return error_response(ErrorCode.ACQUISITION_FAILED)

        target = ResolvedTarget(
            byte_stream=attempt.byte_stream,
            suggested_filename=sanitize_filename(selection.title),
            mime_type=attempt.mime_type or "video/mp4",
            video_only=attempt.used_video_only,
        )
        response = await relay(target, on_close=_transfer_finished)
        if response.status_code >= 400:
            stats["failed_downloads"] += 1
        else:
            # The transfer stays active until the body generator finishes
            streaming = True
            stats["total_downloads"] += 1
            logger.info(f"✅ Streaming {target.suggested_filename}.mp4 via {attempt.strategy}")
        return response

    except Exception as e:
        stats["failed_downloads"] += 1
        logger.exception(f"💥 Unexpected error during download: {e}")
        return error_response(ErrorCode.SERVER_ERROR)
    finally:
        if not streaming:
            stats["active_downloads"] -= 1


@app.get("/api/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint for monitoring

    **Metrics:**
    - Service status and uptime
    - Download statistics
    - yt-dlp version
    """
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=uptime,
        stats=HealthStats(
            total_downloads=stats["total_downloads"],
            active_downloads=stats["active_downloads"],
            failed_downloads=stats["failed_downloads"],
        ),
        yt_dlp_version=yt_dlp.version.__version__,
    )


@app.get("/")
async def root():
    """Root endpoint with service info"""
    return {
        "service": "Shorts Download Service",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "download": "/api/download?url=<link>",
            "health": "/api/health",
        },
        "docs": "/docs",
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler"""
    return JSONResponse(
        status_code=404,
        content=ErrorBody(error=NOT_FOUND_MESSAGE).model_dump()
    )


@app.exception_handler(405)
async def method_not_allowed_handler(request, exc):
    """Every endpoint is GET-only; any other method gets the JSON error body"""
    logger.warning(f"⚠️ {request.method} not allowed on {request.url.path}")
    return error_response(ErrorCode.METHOD_NOT_ALLOWED, status_code=405, headers={"Allow": "GET"})


@app.exception_handler(500)
async def server_error_handler(request, exc):
    """Custom 500 handler"""
    logger.exception("Internal server error")
    return JSONResponse(
        status_code=500,
        content=ErrorBody(error=ERROR_MESSAGES[ErrorCode.SERVER_ERROR]).model_dump()
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
