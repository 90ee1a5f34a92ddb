import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, computed_field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


class Usage(BaseModel):
    """Token counts reported for one response.

    Usage fragments merge by field-wise sum, so a provider that reports
    input and output counts on separate events still ends with one
    consistent total.
    """

    model_config = {"frozen": True}

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read: int | None = None
    cache_creation: int | None = None
    reasoning: int | None = None

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "Usage") -> "Usage":
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read=_add_optional(self.cache_read, other.cache_read),
            cache_creation=_add_optional(
                self.cache_creation, other.cache_creation
            ),
            reasoning=_add_optional(self.reasoning, other.reasoning),
        )


def merge_usage(a: Usage | None, b: Usage | None) -> Usage | None:
    """Sum two optional usage fragments; absent + present = present."""
    if a is None:
        return b
    if b is None:
        return a
    return a + b


class ToolCall(BaseModel):
    """A tool invocation whose arguments have been parsed."""

    model_config = {"frozen": True}

    id: str | None = None
    name: str = ""
    args: Any = None
    index: int = 0

    def to_content_block(self) -> dict:
        if not self.id:
            raise ValueError(
                f"Tool call '{self.name}' at index {self.index} has no id"
            )
        return {
            "type": "tool_use",
            "id": self.id,
            "name": self.name,
            "input": self.args,
        }


class ToolCallFailure(BaseModel):
    """A tool call whose argument buffer never became valid JSON."""

    model_config = {"frozen": True}

    index: int
    id: str | None = None
    name: str | None = None
    raw_args: str = ""
    error: str = ""


class AccumulatedMessage(BaseModel):
    """The finished result of folding one response stream."""

    model_config = {"frozen": True}

    role: MessageRole = MessageRole.ASSISTANT
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    usage: Usage | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    message_id: str | None = None
    model: str | None = None
    tool_call_errors: tuple[ToolCallFailure, ...] = ()

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: tuple) -> list[dict]:
        return [
            {
                "id": t.id,
                "type": "function",
                "function": {
                    "arguments": json.dumps(t.args),
                    "name": t.name
                }
            }
            for t in tool_calls
        ]

    @property
    def complete(self) -> bool:
        return not self.tool_call_errors

    def to_content_blocks(self) -> list[dict]:
        """Render as Anthropic-style content blocks, text first."""
        blocks: list[dict] = []
        if self.text:
            blocks.append({"type": "text", "text": self.text})
        blocks.extend(t.to_content_block() for t in self.tool_calls)
        return blocks
