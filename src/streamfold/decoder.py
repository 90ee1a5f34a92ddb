"""Decode one ``data:`` frame line into a typed :class:`RawEvent`."""

import json
import logging
from collections.abc import Callable
from typing import Any

from streamfold.errors import ProtocolError
from streamfold.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    Done,
    InvocationMetrics,
    MessageDelta,
    MessageMetadata,
    MessageStart,
    MessageStop,
    Ping,
    RawEvent,
    Unknown,
)
from streamfold.message import Usage

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
INVOCATION_METRICS_KEY = "amazon-bedrock-invocationMetrics"


class _Malformed(Exception):
    """A recognised event is missing a required field."""


def _index(payload: dict) -> int:
    index = payload.get("index")
    # bool is an int subclass
    if not isinstance(index, int) or isinstance(index, bool) or index < 0:
        raise _Malformed(f"invalid index {index!r}")
    return index


def _object(payload: dict, key: str) -> dict:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _Malformed(f"{key} is not an object")
    return value


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _count(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _metadata(fields: dict) -> MessageMetadata:
    return MessageMetadata(
        message_id=_optional_str(fields.get("id")),
        model=_optional_str(fields.get("model")),
        stop_reason=_optional_str(fields.get("stop_reason")),
        stop_sequence=_optional_str(fields.get("stop_sequence")),
    )


def parse_usage(raw: dict) -> Usage | None:
    """Build a usage fragment from a provider ``usage`` object.

    Returns ``None`` when no recognised counter is present.
    """
    input_tokens = _count(raw.get("input_tokens"))
    output_tokens = _count(raw.get("output_tokens"))
    cache_read = _count(raw.get("cache_read_input_tokens"))
    cache_creation = _count(raw.get("cache_creation_input_tokens"))
    if all(
        v is None
        for v in (input_tokens, output_tokens, cache_read, cache_creation)
    ):
        return None
    return Usage(
        input_tokens=input_tokens or 0,
        output_tokens=output_tokens or 0,
        cache_read=cache_read,
        cache_creation=cache_creation,
    )


def _message_start(payload: dict) -> MessageStart:
    message = _object(payload, "message")
    return MessageStart(
        role=_optional_str(message.get("role")),
        metadata=_metadata(message),
    )


def _message_delta(payload: dict) -> MessageDelta:
    return MessageDelta(
        fields=_metadata(_object(payload, "delta")),
        usage=parse_usage(_object(payload, "usage")),
    )


def _content_block_start(payload: dict) -> ContentBlockStart:
    block = _object(payload, "content_block")
    return ContentBlockStart(
        index=_index(payload),
        block_kind=_optional_str(block.get("type")) or "",
        id=_optional_str(block.get("id")),
        name=_optional_str(block.get("name")),
    )


def _content_block_delta(payload: dict) -> ContentBlockDelta:
    delta = _object(payload, "delta")
    return ContentBlockDelta(
        index=_index(payload),
        delta_kind=_optional_str(delta.get("type")) or "",
        text=_optional_str(delta.get("text")),
        partial_json=_optional_str(delta.get("partial_json")),
    )


def _content_block_stop(payload: dict) -> ContentBlockStop:
    return ContentBlockStop(index=_index(payload))


def _message_stop(payload: dict) -> MessageStop:
    if INVOCATION_METRICS_KEY not in payload:
        return MessageStop()
    metrics = _object(payload, INVOCATION_METRICS_KEY)
    return MessageStop(
        invocation_metrics=InvocationMetrics(
            input_token_count=_count(metrics.get("inputTokenCount")) or 0,
            output_token_count=_count(metrics.get("outputTokenCount")) or 0,
        )
    )


def _ping(payload: dict) -> Ping:
    return Ping()


_DECODERS: dict[str, Callable[[dict], RawEvent]] = {
    MessageStart.type: _message_start,
    MessageDelta.type: _message_delta,
    ContentBlockStart.type: _content_block_start,
    ContentBlockDelta.type: _content_block_delta,
    ContentBlockStop.type: _content_block_stop,
    MessageStop.type: _message_stop,
    Ping.type: _ping,
}


def strip_data_prefix(line: str) -> str:
    """Return the payload of a frame line without ``data:`` or padding."""
    line = line.strip()
    if line.startswith(DATA_PREFIX):
        line = line[len(DATA_PREFIX):]
    return line.strip()


def decode_frame(line: str) -> RawEvent:
    """Decode one frame line.

    ``[DONE]`` is recognised before any JSON parsing. Valid JSON that
    does not describe a known event decodes to :class:`Unknown`.

    Raises:
        ProtocolError: If the payload is present but not valid JSON.
    """
    payload = strip_data_prefix(line)
    if payload == DONE_SENTINEL:
        return Done()
    if not payload:
        return Unknown(raw=None)

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed frame: {e}", line=line) from e

    if not isinstance(data, dict):
        return Unknown(raw=data)
    kind = data.get("type")
    decoder = _DECODERS.get(kind) if isinstance(kind, str) else None
    if decoder is None:
        return Unknown(raw=data)
    try:
        return decoder(data)
    except _Malformed as e:
        logger.debug(f"Treating malformed {data.get('type')} as unknown: {e}")
        return Unknown(raw=data)
