"""chatvault.splitter - split oversized notes into bounded parts.

Usage::

    from chatvault.splitter import split_text

    parts = split_text(long_markdown, max_size=10_000)
    for p in parts:
        print(p.part, p.total_parts, len(p.content))

Parts are built from whole lines and never overlap, so joining every part's
``content`` gives back the input exactly.  The *overlap* argument is
accepted for callers that pass it but does not duplicate content.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from concurrent.futures import Executor

from chatvault.items import ContentPart
from chatvault.settings import CHUNK_MAX_SIZE, CHUNK_OVERLAP

logger = logging.getLogger(__name__)

_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")
_HEADING_RE = re.compile(r"^#{1,6}\s", re.MULTILINE)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _lines(text: str) -> list[str]:
    """Split into lines, each keeping its trailing newline."""
    return _LINE_RE.findall(text)


def _pack(segments: list[str], max_size: int) -> list[str]:
    """Greedily merge *segments* into chunks of at most *max_size* chars.

    A segment longer than *max_size* becomes a chunk of its own.
    """
    chunks: list[str] = []
    current: list[str] = []
    current_len = 0

    for seg in segments:
        if current and current_len + len(seg) > max_size:
            chunks.append("".join(current))
            current = []
            current_len = 0
        current.append(seg)
        current_len += len(seg)

    if current:
        chunks.append("".join(current))
    return chunks


def _number(chunks: list[str]) -> list[ContentPart]:
    if len(chunks) <= 1:
        return [ContentPart(content=chunks[0] if chunks else "")]
    total = len(chunks)
    return [
        ContentPart(content=chunk, part=i, total_parts=total)
        for i, chunk in enumerate(chunks, 1)
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def split_text(
    text: str,
    max_size: int = CHUNK_MAX_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[ContentPart]:
    """Split *text* on line boundaries into parts of at most *max_size* chars.

    Args:
        text:     The note body.
        max_size: Upper bound for each part; a single longer line is kept
                  whole in a part of its own.
        overlap:  Accepted but unused; parts are disjoint.

    Returns:
        One :class:`ContentPart` without numbering when *text* fits, else
        parts numbered ``1..n`` with ``total_parts = n``.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive; got {max_size!r}")
    if len(text) <= max_size:
        return [ContentPart(content=text)]
    return _number(_pack(_lines(text), max_size))


def split_markdown(
    text: str,
    max_size: int = CHUNK_MAX_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[ContentPart]:
    """Split *text* preferring heading boundaries.

    Sections start at Markdown headings and are merged greedily; a section
    larger than *max_size* is split further on lines.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive; got {max_size!r}")
    if len(text) <= max_size:
        return [ContentPart(content=text)]

    starts = [m.start() for m in _HEADING_RE.finditer(text)]
    if not starts or starts[0] != 0:
        starts.insert(0, 0)
    bounds = starts + [len(text)]
    sections = [text[a:b] for a, b in zip(bounds, bounds[1:]) if b > a]

    segments: list[str] = []
    for section in sections:
        if len(section) > max_size:
            segments.extend(_pack(_lines(section), max_size))
        else:
            segments.append(section)
    return _number(_pack(segments, max_size))


async def split_text_async(
    text: str,
    max_size: int = CHUNK_MAX_SIZE,
    overlap: int = CHUNK_OVERLAP,
    *,
    executor: Executor | None = None,
    splitter: Callable[..., list[ContentPart]] = split_text,
) -> list[ContentPart]:
    """Run *splitter* off the event loop, falling back to a direct call.

    The default executor of the running loop is used when *executor* is
    ``None``.  If the executor is unavailable (shut down, broken pool) the
    split runs synchronously in the caller.
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(executor, splitter, text, max_size, overlap)
    except RuntimeError as exc:
        logger.debug("Split offload unavailable, running inline: %s", exc)
        return splitter(text, max_size, overlap)
