import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import aclosing

from streamfold.builder import build_chunk
from streamfold.chunks import EMPTY_CHUNK, MessageChunk, concat, extract_token
from streamfold.decoder import decode_frame
from streamfold.errors import ProtocolError, StreamfoldError, StreamTimeout
from streamfold.events import (
    ContentBlockStart,
    ContentBlockStop,
    Done,
    MessageStop,
    RawEvent,
)
from streamfold.instrumentation import (
    record_error,
    record_finish,
    record_usage,
    stream_span,
)
from streamfold.message import (
    AccumulatedMessage,
    MessageRole,
    ToolCall,
    ToolCallFailure,
)
from streamfold.streaming import ToolCallAccumulator

logger = logging.getLogger(__name__)


def _role(role: str | None) -> MessageRole:
    if role is None:
        return MessageRole.ASSISTANT
    try:
        return MessageRole(role)
    except ValueError:
        logger.debug(f"Unrecognised role {role!r}, using assistant")
        return MessageRole.ASSISTANT


class StreamAggregator:
    """Folds one response stream into an :class:`AccumulatedMessage`.

    ``stream()`` decodes frame lines and yields each chunk as it is
    merged; ``fold_chunks()`` does the same for a source that already
    produces :class:`MessageChunk` objects. The running fold is always
    available as ``chunk`` and, in message form, as ``partial``. Once
    the source ends, ``result`` holds the finished message.

    An aggregator owns the state of exactly one stream and cannot be
    reused.

    Args:
        timeout: Seconds to wait for each frame before raising
            :class:`StreamTimeout`. ``None`` waits indefinitely.
        skip_malformed: Log and skip frames that are not valid JSON
            instead of raising :class:`ProtocolError`.
        finalize_early: Attempt to finalize tool calls on
            ``content_block_stop`` and on a later
            ``content_block_start`` rather than only at stream end.
        system: Provider name recorded on the tracing span.
        model: Requested model recorded on the tracing span.
    """

    def __init__(
        self,
        timeout: float | None = None,
        skip_malformed: bool = False,
        finalize_early: bool = True,
        system: str = "streamfold",
        model: str | None = None,
    ):
        self.timeout = timeout
        self.skip_malformed = skip_malformed
        self.finalize_early = finalize_early
        self.system = system
        self.model = model

        self.chunk: MessageChunk = EMPTY_CHUNK
        self.result: AccumulatedMessage | None = None
        self._accumulator = ToolCallAccumulator()
        self._claimed = False

    # ------------------------------------------------------------------
    # Fold state
    # ------------------------------------------------------------------

    @property
    def done(self) -> bool:
        return self.result is not None

    @property
    def partial(self) -> AccumulatedMessage:
        """The message as it stands, with tool calls finalized so far."""
        if self.result is not None:
            return self.result
        return self._build(self._accumulator.completed)

    def _build(
        self,
        tool_calls: list[ToolCall],
        failures: tuple[ToolCallFailure, ...] = (),
    ) -> AccumulatedMessage:
        chunk = self.chunk
        return AccumulatedMessage(
            role=_role(chunk.role),
            text=chunk.text,
            tool_calls=tuple(tool_calls),
            usage=chunk.usage,
            stop_reason=chunk.stop_reason,
            stop_sequence=chunk.stop_sequence,
            message_id=chunk.message_id,
            model=chunk.model,
            tool_call_errors=failures,
        )

    def push(self, chunk: MessageChunk) -> MessageChunk:
        """Merge one chunk into the running fold and return the fold."""
        if self.done:
            raise RuntimeError("Stream already finished")
        self.chunk = concat(self.chunk, chunk)
        self._accumulator.feed_chunk(chunk)
        return self.chunk

    def step(self, event: RawEvent) -> MessageChunk | None:
        """Apply one decoded event; return the chunk it produced."""
        if self.finalize_early and isinstance(event, ContentBlockStart):
            self._accumulator.close_through(event.index)
        chunk = build_chunk(event)
        if chunk is not None:
            self.push(chunk)
        if self.finalize_early and isinstance(event, ContentBlockStop):
            self._accumulator.close(event.index)
        return chunk

    def finish(self) -> AccumulatedMessage:
        """Finalize every open tool call and freeze the result.

        Raises:
            ToolCallParseError: For the lowest-index tool call whose
                arguments are not valid JSON. ``result`` and the
                error's ``partial`` still hold the text and every
                other tool call.
        """
        if self.result is not None:
            return self.result
        calls, errors = self._accumulator.finalize()
        failures = tuple(
            ToolCallFailure(
                index=e.index, id=e.id, name=e.name,
                raw_args=e.raw_args, error=e.reason,
            )
            for e in errors
        )
        self.result = self._build(calls, failures)
        logger.info(
            f"Stream finished: {len(self.result.text)} chars, "
            f"{len(calls)} tool calls, {len(errors)} failed, "
            f"stop_reason={self.result.stop_reason}"
        )
        if errors:
            error = errors[0]
            error.partial = self.result
            raise error
        return self.result

    # ------------------------------------------------------------------
    # Async drivers
    # ------------------------------------------------------------------

    def _claim(self) -> None:
        if self._claimed:
            raise RuntimeError("StreamAggregator folds exactly one stream")
        self._claimed = True

    async def _next(self, iterator: AsyncIterator):
        if self.timeout is None:
            return await iterator.__anext__()
        try:
            return await asyncio.wait_for(iterator.__anext__(), self.timeout)
        except asyncio.TimeoutError:
            raise StreamTimeout(self.timeout) from None

    async def _pull(self, source: AsyncIterable) -> AsyncIterator:
        """Read ``source`` one item at a time, closing it when done."""
        iterator = source.__aiter__()
        try:
            while True:
                try:
                    item = await self._next(iterator)
                except StopAsyncIteration:
                    return
                yield item
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def stream(
        self, frames: AsyncIterable[str],
    ) -> AsyncIterator[MessageChunk]:
        """Decode frame lines and yield each chunk as it is merged.

        Stops at ``[DONE]``, ``message_stop`` or the end of ``frames``,
        then finalizes. Iteration may be abandoned at any point;
        ``partial`` then holds the prefix fold.
        """
        self._claim()
        async with stream_span(self.system, self.model) as span:
            try:
                async with aclosing(self._pull(frames)) as lines:
                    async for line in lines:
                        try:
                            event = decode_frame(line)
                        except ProtocolError as e:
                            if not self.skip_malformed:
                                raise
                            logger.warning(f"Skipping malformed frame: {e}")
                            continue
                        if isinstance(event, Done):
                            break
                        chunk = self.step(event)
                        if chunk is not None:
                            yield chunk
                        if isinstance(event, MessageStop):
                            break
                self.finish()
            except StreamfoldError as e:
                if e.partial is None:
                    e.partial = self.partial
                record_error(span, e)
                raise
            record_usage(span, self.result.usage, self.result.model)
            record_finish(span, self.result.stop_reason, len(self.result.tool_calls))

    async def fold_chunks(
        self, chunks: AsyncIterable[MessageChunk],
    ) -> AsyncIterator[MessageChunk]:
        """Fold a source of prebuilt chunks, yielding each one."""
        self._claim()
        async with stream_span(self.system, self.model) as span:
            try:
                async with aclosing(self._pull(chunks)) as pulled:
                    async for chunk in pulled:
                        self.push(chunk)
                        yield chunk
                self.finish()
            except StreamfoldError as e:
                if e.partial is None:
                    e.partial = self.partial
                record_error(span, e)
                raise
            record_usage(span, self.result.usage, self.result.model)
            record_finish(span, self.result.stop_reason, len(self.result.tool_calls))

    async def collect(self, frames: AsyncIterable[str]) -> AccumulatedMessage:
        """Drain ``stream()`` and return the finished message."""
        async for _ in self.stream(frames):
            pass
        return self.result


async def aggregate(
    frames: AsyncIterable[str], **kwargs,
) -> AccumulatedMessage:
    """Fold a whole frame stream into one message.

    Keyword arguments are passed to :class:`StreamAggregator`.
    """
    return await StreamAggregator(**kwargs).collect(frames)


async def aiter_tokens(
    chunks: AsyncIterable[MessageChunk],
) -> AsyncIterator[str]:
    """Yield only the non-empty text tokens of a chunk stream."""
    async for chunk in chunks:
        token = extract_token(chunk)
        if token is not None:
            yield token
