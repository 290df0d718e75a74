"""
Persona fallback: find the best stream for a video across client personas.

Persona order (tried sequentially until one offers a usable candidate):
  1. default      — yt-dlp's default client set
  2. ios          — iOS app protocol
  3. android      — Android app protocol
  4. tv_embedded  — TV embedded player (less restricted)

Within a persona a combined (video+audio) stream always beats a video-only
one; an earlier persona beats a later one in the same tier.
"""

import logging
from typing import Optional, Sequence

from .catalog import classify_upstream_error
from .models import ClientPersona, FormatSelection
from .selector import select_best

logger = logging.getLogger(__name__)

PERSONA_ORDER = (
    ClientPersona.DEFAULT,
    ClientPersona.IOS,
    ClientPersona.ANDROID,
    ClientPersona.TV_EMBEDDED,
)


class FormatResolver:
    """Drives the catalog provider and the selector persona by persona."""

    def __init__(self, client, personas: Sequence[ClientPersona] = PERSONA_ORDER):
        self.client = client
        self.personas = tuple(personas)

    async def resolve(self, video_id: str) -> Optional[FormatSelection]:
        """Return the chosen candidate, or None when no persona offers one."""
        total = len(self.personas)
        title: Optional[str] = None

        for idx, persona in enumerate(self.personas, 1):
            logger.info(f"🎯 Persona {idx}/{total}: {persona.value} ({video_id})")

            try:
                catalog, error = await self.client.get_catalog(video_id, persona)
            except Exception as e:
                catalog, error = None, f"Unexpected exception in catalog provider: {e}"

            if error or catalog is None:
                error_summary = error or "no catalog returned"
                logger.warning(
                    f"⚠️ Persona {persona.value} unavailable "
                    f"({classify_upstream_error(error_summary)}): {error_summary[:120]}"
                )
                continue

            if title is None:
                title = catalog.title

            candidate = select_best(catalog.candidates, require_audio=True)
            video_only = False
            if candidate is None:
                candidate = select_best(catalog.candidates, require_audio=False)
                video_only = True

            if candidate is None:
                logger.info(f"ℹ️ Persona {persona.value}: no usable format among {len(catalog.candidates)} candidates")
                continue

            logger.info(
                f"✅ Persona {persona.value}: format {candidate.format_selector} "
                f"({candidate.height or '?'}p, {'video-only' if video_only else 'video+audio'})"
            )
            return FormatSelection(
                candidate=candidate,
                video_only=video_only,
                persona=persona,
                title=title,
            )

        logger.error(f"❌ No usable format from any of {total} personas for {video_id}")
        return None
