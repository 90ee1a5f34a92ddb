"""Server-Sent Events framing for provider streams.

``aiter_frames`` turns an arbitrarily split byte or text source into
``data:`` frame lines for the decoder. ``sse_generator`` does the
reverse, which is handy for replaying recorded traces.
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator

from streamfold.decoder import DATA_PREFIX, DONE_SENTINEL


def _is_frame(line: str) -> bool:
    # Comments (":"), blank keep-alives and event/id/retry fields carry
    # no payload of their own.
    return line.startswith(DATA_PREFIX)


def iter_frames(text: str | Iterable[str]) -> Iterator[str]:
    """Yield the ``data:`` lines of already-buffered SSE text."""
    if isinstance(text, str):
        text = [text]
    buffer = ""
    for piece in text:
        buffer += piece
        *lines, buffer = buffer.split("\n")
        for line in lines:
            line = line.rstrip("\r")
            if _is_frame(line):
                yield line
    buffer = buffer.rstrip("\r")
    if _is_frame(buffer):
        yield buffer


async def aiter_frames(
    source: AsyncIterable[bytes | str],
    lines: bool = False,
) -> AsyncIterator[str]:
    """Reassemble lines across pieces and yield each ``data:`` line.

    Bytes are decoded as UTF-8 incrementally, so a multi-byte character
    split between two reads is handled. A trailing line without a
    newline is flushed when the source ends.

    Pass ``lines=True`` when every piece is already one whole line with
    its terminator stripped, as ``httpx.Response.aiter_lines()`` yields.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    async for piece in source:
        if isinstance(piece, bytes):
            piece = decoder.decode(piece)
        buffer += piece
        if lines:
            buffer += "\n"
        *complete, buffer = buffer.split("\n")
        for line in complete:
            line = line.rstrip("\r")
            if _is_frame(line):
                yield line
    buffer = (buffer + decoder.decode(b"", final=True)).rstrip("\r")
    if _is_frame(buffer):
        yield buffer


async def sse_generator(
    payloads: AsyncIterable[dict],
) -> AsyncIterator[str]:
    """Encode event payloads as SSE text, ending with ``[DONE]``."""
    async for payload in payloads:
        event_type = payload.get("type", "message")
        data = json.dumps(payload)
        yield f"event: {event_type}\ndata: {data}\n\n"
    yield f"data: {DONE_SENTINEL}\n\n"
