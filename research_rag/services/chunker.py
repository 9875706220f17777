# =============================================================================
# Sentence-Aware Text Chunker — character windows with overlap
# =============================================================================
#
# Splits extracted document text into overlapping segments that can be
# embedded and retrieved independently.
#
# ALGORITHM:
# 1. Slide a window of `chunk_size` characters over the text
# 2. Unless the window reaches the end of the text, look backwards inside it
#    for the last '.' or '\n'; if that break point lies past 70% of the
#    window, cut there so chunks end on a sentence boundary
# 3. Trim the segment; keep it only if it is at least `min_length` long
# 4. Advance by `chunk_size - overlap` from the window start (or only up to
#    the sentence cut, when the cut falls before that point). The overlap is
#    clamped to [0, chunk_size - 100] so the window always moves forward;
#    if the next start would not pass the current one, stop
# 5. Stop once a window has reached the end of the text, or once
#    `max_chunks` segments have been produced (excess is dropped from the
#    tail, never resampled)
#
# Short documents (under ~500 characters) are NOT routed through here: the
# indexer stores them as a single chunk directly.
# =============================================================================

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
MIN_CHUNK_LENGTH = 50

# Fraction of the window a sentence break must pass to be used as the cut
_BREAK_POINT_RATIO = 0.7

# Minimum forward progress per window, enforced through the overlap clamp
_MIN_ADVANCE = 100


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    min_length: int = MIN_CHUNK_LENGTH,
    max_chunks: int | None = None,
) -> list[str]:
    """
    Split `text` into ordered, overlapping, sentence-aware chunks.

    Args:
        text: Full document text.
        chunk_size: Window size in characters (default 1000).
        overlap: Characters shared by consecutive windows (default 200).
            Clamped to [0, chunk_size - 100]; any value, including one
            larger than chunk_size, yields a finite sequence.
        min_length: Trimmed segments shorter than this are discarded.
        max_chunks: Optional cap on the number of chunks returned.

    Returns:
        Chunks in document order.

    Raises:
        ValueError: If chunk_size is not positive.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    safe_overlap = max(0, min(overlap, chunk_size - _MIN_ADVANCE))
    text_length = len(text)

    logger.debug(
        "Chunking text: length=%d, chunk_size=%d, overlap=%d",
        text_length, chunk_size, safe_overlap,
    )

    chunks: list[str] = []
    start = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)
        window = text[start:end]

        if end < text_length:
            break_point = max(window.rfind("."), window.rfind("\n"))
            if break_point > chunk_size * _BREAK_POINT_RATIO:
                window = window[: break_point + 1]

        segment = window.strip()
        if len(segment) >= min_length:
            chunks.append(segment)
            if max_chunks is not None and len(chunks) >= max_chunks:
                if end < text_length:
                    logger.warning(
                        "Chunk cap of %d reached at offset %d of %d; "
                        "dropping the remainder",
                        max_chunks, end, text_length,
                    )
                break

        if end >= text_length:
            break

        # Never resume past the cut point, or the text between the sentence
        # break and the overlap region would belong to no chunk
        cut_end = start + len(window)
        next_start = min(end - safe_overlap, cut_end)
        if next_start <= start:
            # Cannot happen with the clamp above, but never spin
            logger.warning("Chunk window stopped advancing at offset %d", start)
            break
        start = next_start

    logger.debug("Created %d chunks", len(chunks))
    return chunks
