"""Map one decoded event onto at most one :class:`MessageChunk`."""

import logging

from streamfold.chunks import MessageChunk, ToolCallChunk
from streamfold.events import (
    ContentBlockDelta,
    ContentBlockStart,
    MessageDelta,
    MessageStart,
    MessageStop,
    RawEvent,
)
from streamfold.message import Usage

logger = logging.getLogger(__name__)

TOOL_USE = "tool_use"
TEXT_DELTA = "text_delta"
INPUT_JSON_DELTA = "input_json_delta"


def build_chunk(event: RawEvent) -> MessageChunk | None:
    """Translate ``event`` into a chunk, or ``None`` if it carries no
    message content.

    Pings, unknown events, ``content_block_stop``, text block starts and
    unrecognised delta kinds all return ``None``. This is the single
    place such events are ignored; it is never an error.
    """
    if isinstance(event, MessageStart):
        return MessageChunk(
            role=event.role,
            message_id=event.metadata.message_id,
            model=event.metadata.model,
            stop_reason=event.metadata.stop_reason,
            stop_sequence=event.metadata.stop_sequence,
        )

    if isinstance(event, MessageDelta):
        return MessageChunk(
            message_id=event.fields.message_id,
            model=event.fields.model,
            stop_reason=event.fields.stop_reason,
            stop_sequence=event.fields.stop_sequence,
            usage=event.usage,
        )

    if isinstance(event, ContentBlockStart) and event.block_kind == TOOL_USE:
        return MessageChunk(
            tool_call_chunks={
                event.index: ToolCallChunk(
                    index=event.index, id=event.id, name=event.name, args="",
                )
            }
        )

    if isinstance(event, ContentBlockDelta):
        if event.delta_kind == TEXT_DELTA and event.text is not None:
            return MessageChunk(text=event.text, text_index=event.index)
        if event.delta_kind == INPUT_JSON_DELTA and event.partial_json is not None:
            return MessageChunk(
                tool_call_chunks={
                    event.index: ToolCallChunk(
                        index=event.index, args=event.partial_json,
                    )
                }
            )

    if isinstance(event, MessageStop) and event.invocation_metrics is not None:
        metrics = event.invocation_metrics
        return MessageChunk(
            usage=Usage(
                input_tokens=metrics.input_token_count,
                output_tokens=metrics.output_token_count,
            )
        )

    logger.debug(f"No chunk for {type(event).__name__}")
    return None
