"""Tool-call reassembly across streaming chunks.

Providers stream tool-call arguments as arbitrary slices of a JSON
document. The :class:`ToolCallAccumulator` keeps one raw buffer per
index and parses it only when the call is finalized.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from streamfold.chunks import MessageChunk, ToolCallChunk, merge_tool_call_chunks
from streamfold.errors import ToolCallParseError
from streamfold.message import ToolCall

logger = logging.getLogger(__name__)


def parse_arguments(raw: str) -> Any:
    """Parse a complete argument buffer; empty means no arguments."""
    if not raw.strip():
        return {}
    return json.loads(raw)


def _to_tool_call(tc: ToolCallChunk, args: Any) -> ToolCall:
    return ToolCall(id=tc.id, name=tc.name or "", args=args, index=tc.index)


def _in_index_order(retired: list[ToolCall], current: list[ToolCall]) -> list[ToolCall]:
    # Stable: a retired call precedes the call that reused its index.
    return sorted(retired + current, key=lambda c: c.index)


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Each index has one pending buffer until it is finalized. Early
    finalization (:meth:`close`, :meth:`close_through`) is
    opportunistic: a buffer that does not parse yet stays pending. Only
    :meth:`finalize`, at true stream end, reports parse failures.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ToolCallChunk] = {}
        self._completed: dict[int, ToolCall] = {}
        # Finished calls whose index was later reused by a new call.
        self._retired: list[ToolCall] = []

    def feed(self, fragment: ToolCallChunk) -> None:
        index = fragment.index
        if index in self._completed and (fragment.id or fragment.name):
            logger.debug(f"New tool call reuses finished index {index}")
            self._retired.append(self._completed.pop(index))
            self._pending[index] = fragment
            return
        # More argument text for a closed index reopens it so the buffer
        # stays identical to the merged chunk state.
        if index in self._completed and fragment.args:
            logger.debug(f"Reopening tool call at index {index}")
            del self._completed[index]
        if index in self._pending:
            self._pending[index] = merge_tool_call_chunks(
                self._pending[index], fragment
            )
        else:
            self._pending[index] = fragment

    def feed_chunk(self, chunk: MessageChunk) -> None:
        for index in sorted(chunk.tool_call_chunks):
            self.feed(chunk.tool_call_chunks[index])

    def close(self, index: int) -> ToolCall | None:
        """Try to finalize ``index`` before the stream ends.

        Returns the finished call, or ``None`` if the index is unknown
        or its arguments are not complete JSON yet.
        """
        if index in self._completed:
            return self._completed[index]
        tc = self._pending.get(index)
        if tc is None:
            return None
        try:
            args = parse_arguments(tc.args)
        except json.JSONDecodeError:
            logger.debug(f"Tool call at index {index} not complete yet")
            return None
        call = _to_tool_call(tc, args)
        self._completed[index] = call
        return call

    def close_through(self, index: int) -> list[ToolCall]:
        """Try to finalize every open index at or below ``index``.

        Indices with nothing buffered yet are left open; their
        arguments may simply not have started streaming.
        """
        closed = []
        for i in sorted(self._pending):
            if i > index:
                break
            if i in self._completed or not self._pending[i].args.strip():
                continue
            call = self.close(i)
            if call is not None:
                closed.append(call)
        return closed

    @property
    def completed(self) -> list[ToolCall]:
        """Tool calls finalized so far, in index order."""
        return _in_index_order(
            self._retired, [self._completed[i] for i in sorted(self._completed)]
        )

    @property
    def open_indices(self) -> list[int]:
        return [i for i in sorted(self._pending) if i not in self._completed]

    def finalize(self) -> tuple[list[ToolCall], list[ToolCallParseError]]:
        """Finalize every call at stream end.

        Returns the finished calls in index order and one
        :class:`ToolCallParseError` per call whose buffer is not valid
        JSON. A failure never affects the other calls.
        """
        calls: list[ToolCall] = []
        errors: list[ToolCallParseError] = []
        for index in sorted(self._pending):
            if index in self._completed:
                calls.append(self._completed[index])
                continue
            tc = self._pending[index]
            try:
                args = parse_arguments(tc.args)
            except json.JSONDecodeError as e:
                logger.warning(
                    f"Invalid JSON in arguments for {tc.name} at index {index}: {e}"
                )
                errors.append(ToolCallParseError(
                    index=index, raw_args=tc.args, reason=str(e),
                    id=tc.id, name=tc.name,
                ))
                continue
            call = _to_tool_call(tc, args)
            self._completed[index] = call
            calls.append(call)
        return _in_index_order(self._retired, calls), errors


def extract_tool_use(chunk: MessageChunk) -> ToolCall | None:
    """Return the first tool call of a running fold whose arguments
    already parse, or ``None``.

    Lets a UI show a tool invocation before the stream has ended.
    """
    for index in sorted(chunk.tool_call_chunks):
        tc = chunk.tool_call_chunks[index]
        if tc.name is None and tc.id is None:
            continue
        if not tc.args.strip():
            continue
        try:
            args = json.loads(tc.args)
        except json.JSONDecodeError:
            continue
        return _to_tool_call(tc, args)
    return None
