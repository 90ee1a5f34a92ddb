"""Mergeable message fragments and the ``concat`` operator.

A :class:`MessageChunk` is a partial message. Chunks combine with
:func:`concat` (or ``+``), which is associative and has the empty
chunk as its identity, so a left fold over any prefix of a stream is
itself a valid partial message.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from streamfold.message import Usage, merge_usage


@dataclass(frozen=True)
class ToolCallChunk:
    """Partial state of the tool call at ``index``.

    Only the chunk that originates an index sets ``id`` and ``name``;
    later chunks carry argument text only.
    """

    index: int
    id: str | None = None
    name: str | None = None
    args: str = ""


@dataclass(frozen=True)
class MessageChunk:
    """Normalised streaming chunk from any provider."""

    text: str = ""
    text_index: int | None = None
    tool_call_chunks: dict[int, ToolCallChunk] = field(default_factory=dict)
    role: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    message_id: str | None = None
    model: str | None = None
    usage: Usage | None = None

    def __add__(self, other: MessageChunk) -> MessageChunk:
        if not isinstance(other, MessageChunk):
            return NotImplemented
        return concat(self, other)


EMPTY_CHUNK = MessageChunk()


def _first(a, b):
    return a if a is not None else b


def _last(a, b):
    return b if b is not None else a


def merge_tool_call_chunks(a: ToolCallChunk, b: ToolCallChunk) -> ToolCallChunk:
    """Merge two chunks for the same index."""
    if a.index != b.index:
        raise ValueError(
            f"Cannot merge tool call chunks at indices {a.index} and {b.index}"
        )
    return ToolCallChunk(
        index=a.index,
        id=_first(a.id, b.id),
        name=_first(a.name, b.name),
        args=a.args + b.args,
    )


def concat(a: MessageChunk, b: MessageChunk) -> MessageChunk:
    """Combine two chunks, ``a`` before ``b``."""
    tool_call_chunks = dict(a.tool_call_chunks)
    for index, tc in b.tool_call_chunks.items():
        if index in tool_call_chunks:
            tool_call_chunks[index] = merge_tool_call_chunks(
                tool_call_chunks[index], tc
            )
        else:
            tool_call_chunks[index] = tc
    return MessageChunk(
        text=a.text + b.text,
        text_index=_last(a.text_index, b.text_index),
        tool_call_chunks=tool_call_chunks,
        role=_last(a.role, b.role),
        stop_reason=_last(a.stop_reason, b.stop_reason),
        stop_sequence=_last(a.stop_sequence, b.stop_sequence),
        message_id=_last(a.message_id, b.message_id),
        model=_last(a.model, b.model),
        usage=merge_usage(a.usage, b.usage),
    )


def extract_token(chunk: MessageChunk) -> str | None:
    """Return the chunk's text for token-by-token display, if any.

    Chunks that carry only tool-call content or metadata yield
    ``None`` so callbacks never see empty tokens.
    """
    return chunk.text if chunk.text else None
