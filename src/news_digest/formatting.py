"""Text renderings of a digest."""

from __future__ import annotations

from .models import Digest

TELEGRAM_MAX = 4000


def format_digest_plain_text(digest: Digest) -> str:
    """Mood sentence followed by one dash bullet per accepted highlight."""
    parts = [digest.mood_text.strip()]
    parts.extend(f"- {bullet.strip()}" for bullet in digest.bullets if bullet.strip())
    return "\n\n".join(part for part in parts if part).strip()


def split_message(text: str, limit: int = TELEGRAM_MAX) -> list[str]:
    """
    Split `text` into chunks no longer than `limit`.

    Cuts happen on the last newline before the limit when there is one, so
    bullets are only broken when a single bullet exceeds the limit.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1.")
    chunks: list[str] = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip("\n"))
        remaining = remaining[cut:].lstrip("\n")
    if remaining or not chunks:
        chunks.append(remaining)
    return chunks
