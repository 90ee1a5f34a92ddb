"""Typed protocol events decoded from one stream frame.

The set is closed: every frame decodes to exactly one of the classes
below. Frames whose ``type`` is not recognised become :class:`Unknown`
and are dropped downstream without error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from streamfold.message import Usage


@dataclass(frozen=True)
class MessageMetadata:
    """Top-level message fields carried by ``message_start`` and
    ``message_delta``."""

    message_id: str | None = None
    model: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None


@dataclass(frozen=True)
class InvocationMetrics:
    """Provider usage extension attached to ``message_stop``."""

    input_token_count: int = 0
    output_token_count: int = 0


@dataclass(frozen=True)
class RawEvent:
    """Base for all decoded events."""

    type: ClassVar[str] = ""


@dataclass(frozen=True)
class MessageStart(RawEvent):
    type: ClassVar[str] = "message_start"

    role: str | None = None
    metadata: MessageMetadata = field(default_factory=MessageMetadata)


@dataclass(frozen=True)
class MessageDelta(RawEvent):
    type: ClassVar[str] = "message_delta"

    fields: MessageMetadata = field(default_factory=MessageMetadata)
    usage: Usage | None = None


@dataclass(frozen=True)
class ContentBlockStart(RawEvent):
    """Opens the content block at ``index``.

    ``block_kind`` values: ``"text"``, ``"tool_use"``, or whatever the
    provider sends.
    """

    type: ClassVar[str] = "content_block_start"

    index: int = 0
    block_kind: str = ""
    id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class ContentBlockDelta(RawEvent):
    """Incremental content for the block at ``index``.

    ``delta_kind`` values: ``"text_delta"`` (sets ``text``) and
    ``"input_json_delta"`` (sets ``partial_json``).
    """

    type: ClassVar[str] = "content_block_delta"

    index: int = 0
    delta_kind: str = ""
    text: str | None = None
    partial_json: str | None = None


@dataclass(frozen=True)
class ContentBlockStop(RawEvent):
    type: ClassVar[str] = "content_block_stop"

    index: int = 0


@dataclass(frozen=True)
class MessageStop(RawEvent):
    type: ClassVar[str] = "message_stop"

    invocation_metrics: InvocationMetrics | None = None


@dataclass(frozen=True)
class Ping(RawEvent):
    type: ClassVar[str] = "ping"


@dataclass(frozen=True)
class Unknown(RawEvent):
    """Any frame the decoder does not recognise, kept verbatim."""

    raw: Any = None


@dataclass(frozen=True)
class Done(RawEvent):
    """The ``[DONE]`` end-of-stream sentinel."""
