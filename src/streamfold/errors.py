"""Exceptions raised while decoding and folding a response stream.

Every error raised by :class:`~streamfold.aggregator.StreamAggregator`
carries ``partial``: the message as it stood when the error surfaced,
so text that streamed successfully is never lost.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from streamfold.message import AccumulatedMessage


class StreamfoldError(Exception):
    """Base for all streamfold errors."""

    partial: AccumulatedMessage | None = None


class ProtocolError(StreamfoldError):
    """A frame carried a payload that is not valid JSON.

    Recoverable per frame: the caller decides whether to abort the
    stream or skip the frame.
    """

    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line


class ToolCallParseError(StreamfoldError):
    """A tool call's argument buffer was not valid JSON at stream end.

    Fatal only to that tool call. Text and the other tool calls remain
    available on ``partial``.
    """

    def __init__(
        self,
        index: int,
        raw_args: str,
        reason: str,
        id: str | None = None,
        name: str | None = None,
    ):
        super().__init__(
            f"Tool call {name or '<unnamed>'} at index {index} has "
            f"invalid JSON arguments: {reason}"
        )
        self.index = index
        self.id = id
        self.name = name
        self.raw_args = raw_args
        self.reason = reason


class StreamTimeout(StreamfoldError, TimeoutError):
    """No frame arrived within the allotted window."""

    def __init__(self, timeout: float):
        super().__init__(f"No frame received within {timeout}s")
        self.timeout = timeout
