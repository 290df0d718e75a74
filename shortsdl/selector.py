"""
Best-format selection over a catalog of stream candidates.
"""

from typing import Iterable, Optional

from .models import StreamCandidate


def _matches(candidate: StreamCandidate, require_audio: bool) -> bool:
    if require_audio:
        return candidate.has_audio and candidate.has_video
    return candidate.has_video and not candidate.has_audio


def select_best(
    candidates: Iterable[StreamCandidate],
    require_audio: bool,
) -> Optional[StreamCandidate]:
    """
    Pick the tallest candidate of the requested kind, preferring MP4.

    ``require_audio=True`` selects combined (video+audio) streams,
    ``False`` selects video-only streams. Equal heights keep catalog order.
    """
    survivors = [c for c in candidates if _matches(c, require_audio)]
    if not survivors:
        return None

    mp4 = [c for c in survivors if c.is_mp4]
    pool = mp4 or survivors

    # sorted() is stable, so first-seen order breaks height ties
    return sorted(pool, key=lambda c: c.height or 0, reverse=True)[0]
