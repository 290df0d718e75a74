"""
Pydantic models and shared types for the download pipeline
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Error code classifications"""
    INVALID_INPUT = "INVALID_INPUT"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    NO_FORMAT_FOUND = "NO_FORMAT_FOUND"
    ACQUISITION_FAILED = "ACQUISITION_FAILED"
    MID_STREAM_ERROR = "MID_STREAM_ERROR"
    SERVER_ERROR = "SERVER_ERROR"


# User-facing messages, shown as-is by the web UI
ERROR_MESSAGES = {
    ErrorCode.INVALID_INPUT: "Dit lijkt geen geldige YouTube/Shorts link.",
    ErrorCode.METHOD_NOT_ALLOWED: "Alleen GET is toegestaan.",
    ErrorCode.NO_FORMAT_FOUND: "Geen geschikt formaat gevonden voor deze video.",
    ErrorCode.ACQUISITION_FAILED: "Kon stream niet openen. Probeer opnieuw.",
    ErrorCode.MID_STREAM_ERROR: "Probleem tijdens downloaden. Probeer opnieuw.",
    ErrorCode.SERVER_ERROR: "Kon de video niet ophalen. Controleer de link en probeer opnieuw.",
}

MISSING_URL_MESSAGE = 'Voer een YouTube link in als query parameter "url".'
NOT_FOUND_MESSAGE = "Endpoint niet gevonden."


class ClientPersona(str, Enum):
    """Upstream client identities, named after yt-dlp player clients"""
    DEFAULT = "default"
    IOS = "ios"
    ANDROID = "android"
    TV_EMBEDDED = "tv_embedded"


class StreamType(str, Enum):
    """Retrieval mode at the download layer"""
    COMBINED = "video+audio"
    VIDEO_ONLY = "video"


class StreamCandidate(BaseModel):
    """One stream representation offered by the catalog"""
    model_config = ConfigDict(frozen=True)

    has_audio: bool
    has_video: bool
    height: Optional[int] = None
    container_mime: str = "video/mp4"
    direct_url: Optional[str] = None
    format_selector: str = Field(..., description="Opaque upstream format id")

    @property
    def is_mp4(self) -> bool:
        return "mp4" in self.container_mime


class Catalog(BaseModel):
    """Candidates returned for one video under one persona"""
    persona: ClientPersona
    title: Optional[str] = None
    candidates: List[StreamCandidate] = Field(default_factory=list)


class FormatSelection(BaseModel):
    """Chosen candidate plus what is needed to fetch and name it"""
    candidate: StreamCandidate
    video_only: bool
    persona: ClientPersona
    title: Optional[str] = None


class ResolvedUrl(BaseModel):
    """A playable URL handed out by the catalog provider"""
    url: str
    http_headers: dict = Field(default_factory=dict)
    container_mime: Optional[str] = None


class DownloadAttemptResult(BaseModel):
    """Outcome of one stream acquisition strategy"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    byte_stream: Optional[Any] = None
    used_video_only: bool = False
    mime_type: Optional[str] = None
    strategy: Optional[str] = None
    error: Optional[str] = None


class ResolvedTarget(BaseModel):
    """Everything the relay needs to answer one request"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    byte_stream: Any
    suggested_filename: str
    mime_type: str = "video/mp4"
    video_only: bool = False


class ErrorBody(BaseModel):
    """JSON body of every error response"""
    error: str


class HealthStats(BaseModel):
    """Statistics for health check"""
    total_downloads: int
    active_downloads: int
    failed_downloads: int


class HealthResponse(BaseModel):
    """Response schema for /api/health"""
    status: str
    version: str
    uptime_seconds: float
    stats: HealthStats
    yt_dlp_version: str
