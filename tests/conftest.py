import json

import pytest

from streamfold.chunks import MessageChunk, ToolCallChunk


# ---------------------------------------------------------------------------
# Frame builders (mirror the provider wire format)
# ---------------------------------------------------------------------------

def frame(payload: dict) -> str:
    return f"data: {json.dumps(payload)}"


def message_start(role="assistant", msg_id="msg_1", model="claude-test", **extra):
    return frame({
        "type": "message_start",
        "message": {"id": msg_id, "role": role, "model": model,
                    "content": [], **extra},
    })


def message_delta(stop_reason=None, usage=None):
    payload = {"type": "message_delta", "delta": {"stop_reason": stop_reason}}
    if usage is not None:
        payload["usage"] = usage
    return frame(payload)


def text_start(index: int):
    return frame({
        "type": "content_block_start", "index": index,
        "content_block": {"type": "text", "text": ""},
    })


def tool_start(index: int, call_id: str, name: str):
    return frame({
        "type": "content_block_start", "index": index,
        "content_block": {"type": "tool_use", "id": call_id, "name": name,
                          "input": {}},
    })


def text_delta(index: int, text: str):
    return frame({
        "type": "content_block_delta", "index": index,
        "delta": {"type": "text_delta", "text": text},
    })


def json_delta(index: int, partial: str):
    return frame({
        "type": "content_block_delta", "index": index,
        "delta": {"type": "input_json_delta", "partial_json": partial},
    })


def block_stop(index: int):
    return frame({"type": "content_block_stop", "index": index})


def message_stop(input_tokens=None, output_tokens=None):
    payload = {"type": "message_stop"}
    if input_tokens is not None:
        payload["amazon-bedrock-invocationMetrics"] = {
            "inputTokenCount": input_tokens,
            "outputTokenCount": output_tokens,
        }
    return frame(payload)


PING = frame({"type": "ping"})
DONE = "data: [DONE]"


async def agen(items):
    """Async source over a list, as a transport would deliver it."""
    for item in items:
        yield item


def text_chunk(text: str, index: int = 0) -> MessageChunk:
    return MessageChunk(text=text, text_index=index)


def tool_chunk(index: int, args: str = "", call_id=None, name=None) -> MessageChunk:
    return MessageChunk(tool_call_chunks={
        index: ToolCallChunk(index=index, id=call_id, name=name, args=args)
    })


# ---------------------------------------------------------------------------
# Recorded traces
# ---------------------------------------------------------------------------

@pytest.fixture
def weather_frames():
    """Text then one tool call, ending with message_stop."""
    return [
        message_start(),
        text_start(0),
        text_delta(0, "Let me check. "),
        block_stop(0),
        tool_start(1, "t1", "get_weather"),
        json_delta(1, '{"loc'),
        json_delta(1, 'ation":"NYC"}'),
        block_stop(1),
        message_delta(stop_reason="tool_use", usage={"output_tokens": 12}),
        message_stop(),
    ]


@pytest.fixture
def interleaved_frames():
    """Two tool calls streaming in parallel with text in between."""
    return [
        message_start(),
        tool_start(0, "a", "search"),
        tool_start(1, "b", "lookup"),
        text_delta(2, "Working"),
        json_delta(1, '{"id": '),
        json_delta(0, '{"q": "py'),
        text_delta(2, " on it"),
        json_delta(0, 'thon"}'),
        json_delta(1, '42}'),
        message_delta(stop_reason="tool_use"),
        message_stop(),
        DONE,
    ]
