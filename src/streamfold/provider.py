import logging
import os
from collections.abc import AsyncIterator

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionChunk
from openai.types.completion_usage import CompletionUsage

from streamfold.aggregator import StreamAggregator
from streamfold.chunks import MessageChunk, ToolCallChunk, merge_tool_call_chunks
from streamfold.message import AccumulatedMessage, Usage

logger = logging.getLogger(__name__)


def openai_usage(usage: CompletionUsage) -> Usage:
    cache_read = None
    reasoning = None
    if usage.prompt_tokens_details is not None:
        cache_read = usage.prompt_tokens_details.cached_tokens
    if usage.completion_tokens_details is not None:
        reasoning = usage.completion_tokens_details.reasoning_tokens
    return Usage(
        input_tokens=usage.prompt_tokens,
        output_tokens=usage.completion_tokens,
        cache_read=cache_read,
        reasoning=reasoning,
    )


def openai_chunk_to_message_chunk(
    chunk: ChatCompletionChunk,
) -> MessageChunk | None:
    """Map one chat-completions stream chunk onto a :class:`MessageChunk`.

    Only the first choice is read. Returns ``None`` for chunks that
    carry nothing (no choice and no usage).
    """
    usage = openai_usage(chunk.usage) if chunk.usage is not None else None
    if not chunk.choices:
        if usage is None:
            return None
        return MessageChunk(message_id=chunk.id, model=chunk.model, usage=usage)

    choice = chunk.choices[0]
    delta = choice.delta
    tool_call_chunks = {}
    for tc in delta.tool_calls or []:
        function = tc.function
        fragment = ToolCallChunk(
            index=tc.index,
            id=tc.id,
            name=function.name if function is not None else None,
            args=(function.arguments or "") if function is not None else "",
        )
        if tc.index in tool_call_chunks:
            fragment = merge_tool_call_chunks(tool_call_chunks[tc.index], fragment)
        tool_call_chunks[tc.index] = fragment

    return MessageChunk(
        text=delta.content or "",
        text_index=choice.index if delta.content else None,
        tool_call_chunks=tool_call_chunks,
        role=delta.role,
        stop_reason=choice.finish_reason,
        message_id=chunk.id,
        model=chunk.model,
        usage=usage,
    )


class ModelProvider:
    """A source of :class:`MessageChunk` streams for a chat request."""

    name = "provider"

    def stream_chunks(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[MessageChunk]:
        raise NotImplementedError

    async def complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
            timeout: float | None = None,
    ) -> AccumulatedMessage:
        """Stream a completion and return the folded message."""
        aggregator = StreamAggregator(
            timeout=timeout, system=self.name, model=model,
        )
        async for _ in aggregator.fold_chunks(
            self.stream_chunks(model, messages, tools)
        ):
            pass
        return aggregator.result


class OpenAIProvider(ModelProvider):
    """Streams from any OpenAI-compatible chat-completions endpoint."""

    name = "openai"

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            client: AsyncOpenAI | None = None,
    ):
        if client is None:
            if not api_key:
                api_key = os.getenv("OPENAI_API_KEY")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=5,
                timeout=600.0
            )
        self.client = client

    async def stream_chunks(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[MessageChunk]:
        kwargs = {}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        logger.debug(f"Streaming {model} with {len(tools or [])} tools")
        stream = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            stream_options={"include_usage": True},
            **kwargs,
        )
        async for raw in stream:
            chunk = openai_chunk_to_message_chunk(raw)
            if chunk is not None:
                yield chunk
