"""
Video id extraction from pasted YouTube links.
"""

from typing import Optional
from urllib.parse import parse_qs, urlsplit

SHORT_LINK_HOST = "youtu.be"
MAIN_HOST = "youtube.com"
MOBILE_HOST = "m.youtube.com"


def _is_main_host(host: str) -> bool:
    return host == MAIN_HOST or host == MOBILE_HOST or host.endswith("." + MAIN_HOST)


def extract_video_id(raw_url: str) -> Optional[str]:
    """
    Return the video id referenced by ``raw_url``, or None if the link is not
    a recognised YouTube link.

    Accepted forms:
        https://youtu.be/<id>
        https://(www.|m.|*.)youtube.com/watch?v=<id>
        https://(www.|m.|*.)youtube.com/shorts/<id>
    """
    if not raw_url:
        return None
    try:
        parts = urlsplit(raw_url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not host:
        return None

    if host.startswith("www."):
        host = host[len("www."):]

    segments = [s for s in parts.path.split("/") if s]

    if host == SHORT_LINK_HOST:
        return segments[0] if segments else None

    if _is_main_host(host):
        video_ids = parse_qs(parts.query).get("v")
        if video_ids and video_ids[0]:
            return video_ids[0]
        if len(segments) >= 2 and segments[0] == "shorts":
            return segments[1]

    return None
