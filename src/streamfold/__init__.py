"""Assemble streamed chat-completion responses into finished messages."""

from streamfold.aggregator import StreamAggregator, aggregate, aiter_tokens
from streamfold.builder import build_chunk
from streamfold.chunks import (
    EMPTY_CHUNK,
    MessageChunk,
    ToolCallChunk,
    concat,
    extract_token,
)
from streamfold.decoder import decode_frame
from streamfold.errors import (
    ProtocolError,
    StreamfoldError,
    StreamTimeout,
    ToolCallParseError,
)
from streamfold.instrumentation import instrument, uninstrument
from streamfold.message import (
    AccumulatedMessage,
    MessageRole,
    ToolCall,
    ToolCallFailure,
    Usage,
)
from streamfold.sse import aiter_frames, iter_frames
from streamfold.streaming import ToolCallAccumulator, extract_tool_use

__all__ = [
    "AccumulatedMessage",
    "EMPTY_CHUNK",
    "MessageChunk",
    "MessageRole",
    "ProtocolError",
    "StreamAggregator",
    "StreamTimeout",
    "StreamfoldError",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallChunk",
    "ToolCallFailure",
    "ToolCallParseError",
    "Usage",
    "aggregate",
    "aiter_frames",
    "aiter_tokens",
    "build_chunk",
    "concat",
    "decode_frame",
    "extract_token",
    "extract_tool_use",
    "instrument",
    "iter_frames",
    "uninstrument",
]
