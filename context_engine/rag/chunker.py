"""Split long knowledge text into overlapping windows for embedding.

Window sizes are given in tokens and converted with a fixed
characters-per-token estimate (~4 for Portuguese prose).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

# --- Chunk size constants ---
CHARS_PER_TOKEN = 4
DEFAULT_MAX_TOKENS = 800
DEFAULT_OVERLAP_TOKENS = 100
MIN_CHUNK_CHARS = 50

# Break points; the nearest one before the window edge wins
_BOUNDARIES = (" ", ".", "\n")


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[str]:
    """Split text into overlapping chunks.

    Text that fits in one window comes back as a single trimmed chunk.
    Longer text is cut just after the last space, period or newline in the
    second half of each window, else hard-cut at the window edge. Blank
    text gives a single empty chunk. Chunks of long text shorter than
    MIN_CHUNK_CHARS are dropped.

    Raises:
        ValueError: if the overlap is not smaller than the window.
    """
    if max_tokens < 1:
        raise ValueError(f"max_tokens must be >= 1, got {max_tokens}")
    if overlap_tokens < 0 or overlap_tokens >= max_tokens:
        raise ValueError(
            f"overlap_tokens must be within [0, max_tokens), got {overlap_tokens}"
        )

    text = (text or "").strip()
    max_chars = max_tokens * CHARS_PER_TOKEN
    overlap = overlap_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = start + max_chars
        if end >= len(text):
            chunks.append(text[start:].strip())
            break
        end = _break_point(text, start, end, max_chars)
        chunks.append(text[start:end].strip())
        # Always move forward, even when the overlap exceeds the cut
        start = max(end - overlap, start + 1)

    kept = [c for c in chunks if len(c) >= MIN_CHUNK_CHARS]
    if len(kept) < len(chunks):
        logger.debug("Dropped %d short chunks", len(chunks) - len(kept))
    return kept


def _break_point(text: str, start: int, end: int, max_chars: int) -> int:
    """Index just past the nearest boundary in (start + max_chars/2, end), else end."""
    floor = start + max_chars // 2
    pos = max(text.rfind(b, floor, end) for b in _BOUNDARIES)
    if pos > floor:
        return pos + 1
    return end
