"""Line splitting for newline-delimited JSON streams."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


async def iter_lines(
    chunks: AsyncIterator[bytes],
    on_chunk: Callable[[], None] | None = None,
) -> AsyncIterator[str]:
    """
    Re-assemble body chunks into complete, non-blank lines.

    on_chunk fires for every chunk received, keep-alive newlines included,
    so liveness tracking sees traffic even when no event is produced. A
    trailing partial line at end-of-stream is dropped, as it was never
    terminated.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        if on_chunk is not None:
            on_chunk()
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            if line.strip():
                yield line


def parse_line(line: str) -> dict[str, Any] | None:
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping unparsable stream line: %.120r", line)
        return None
    if not isinstance(data, dict):
        return None
    return data


def split_moves(moves: str | None) -> list[str]:
    """'e2e4 e7e5' -> ['e2e4', 'e7e5']; empty or missing -> []."""
    if not moves:
        return []
    return moves.split()
