"""Unit tests for the instrumentation module.

Tests use unittest.mock for OTel interactions.  ``opentelemetry-api``
is a test dependency so we can import ``SpanKind`` / ``StatusCode``
directly for assertion accuracy.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import streamfold.instrumentation as inst
from streamfold.aggregator import StreamAggregator
from streamfold.errors import ToolCallParseError
from streamfold.instrumentation import (
    record_error,
    record_finish,
    record_usage,
    stream_span,
    uninstrument,
)
from streamfold.message import Usage
from tests.conftest import agen, json_delta, message_stop, text_delta, tool_start


@pytest.fixture(autouse=True)
def _reset_tracer():
    """Ensure _tracer is reset to None before and after each test."""
    inst._tracer = None
    yield
    inst._tracer = None


@pytest.fixture
def mock_tracer():
    span = MagicMock()
    tracer = MagicMock()
    tracer.start_as_current_span.return_value.__enter__ = MagicMock(
        return_value=span
    )
    tracer.start_as_current_span.return_value.__exit__ = MagicMock(
        return_value=False
    )
    inst._tracer = tracer
    return tracer, span


# -------------------------------------------------------------------
# instrument() / uninstrument()
# -------------------------------------------------------------------


class TestInstrument:
    def test_raises_without_otel_installed(self):
        with patch("importlib.util.find_spec", return_value=None):
            with pytest.raises(ImportError, match="pip install"):
                inst.instrument()

    def _mock_otel(self, mock_trace):
        """Patch find_spec + sys.modules for a mock OTel env."""
        return (
            patch("importlib.util.find_spec", return_value=MagicMock()),
            patch.dict(
                "sys.modules",
                {
                    "opentelemetry": MagicMock(trace=mock_trace),
                    "opentelemetry.trace": mock_trace,
                },
            ),
        )

    def test_sets_global_tracer(self):
        mock_tracer = MagicMock()
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = mock_tracer
        mock_trace.NoOpTracer = type("NoOpTracer", (), {})

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            inst.instrument()

        assert inst._tracer is mock_tracer
        mock_trace.get_tracer.assert_called_once_with("streamfold")

    def test_logs_message_for_noop_tracer(self, caplog):
        NoOpTracer = type("NoOpTracer", (), {})
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = NoOpTracer()
        mock_trace.NoOpTracer = NoOpTracer

        p1, p2 = self._mock_otel(mock_trace)
        with p1, p2:
            with caplog.at_level(
                logging.INFO, logger="streamfold.instrumentation",
            ):
                inst.instrument()

        assert any(
            "No TracerProvider configured" in r.message
            for r in caplog.records
        )

    def test_uninstrument_clears_tracer(self):
        inst._tracer = MagicMock()
        uninstrument()
        assert inst._tracer is None


# -------------------------------------------------------------------
# stream_span
# -------------------------------------------------------------------


class TestStreamSpan:
    @pytest.mark.asyncio
    async def test_yields_none_without_tracer(self):
        async with stream_span("anthropic", "m") as s:
            assert s is None

    @pytest.mark.asyncio
    async def test_creates_chat_span(self, mock_tracer):
        tracer, span = mock_tracer
        async with stream_span("anthropic", "claude-test") as s:
            assert s is span

        tracer.start_as_current_span.assert_called_once_with(
            "chat claude-test",
            kind=SpanKind.CLIENT,
            attributes={
                "gen_ai.operation.name": "chat",
                "gen_ai.provider.name": "anthropic",
                "gen_ai.request.model": "claude-test",
            },
        )

    @pytest.mark.asyncio
    async def test_model_optional(self, mock_tracer):
        tracer, _ = mock_tracer
        async with stream_span("streamfold"):
            pass

        args, kwargs = tracer.start_as_current_span.call_args
        assert args == ("chat streamfold",)
        assert "gen_ai.request.model" not in kwargs["attributes"]


# -------------------------------------------------------------------
# record_* helpers
# -------------------------------------------------------------------


class TestRecordUsage:
    def test_noop_on_none_span(self):
        record_usage(None, Usage(input_tokens=1))

    def test_sets_token_counts_and_response_model(self):
        span = MagicMock()
        record_usage(
            span, Usage(input_tokens=100, output_tokens=50),
            response_model="claude-test-2025",
        )

        span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 100)
        span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 50)
        span.set_attribute.assert_any_call(
            "gen_ai.response.model", "claude-test-2025"
        )

    def test_missing_usage(self):
        span = MagicMock()
        record_usage(span, None)
        span.set_attribute.assert_not_called()


def test_record_finish():
    span = MagicMock()
    record_finish(span, "tool_use", 2)
    span.set_attribute.assert_any_call(
        "gen_ai.response.finish_reasons", ["tool_use"]
    )
    span.set_attribute.assert_any_call("streamfold.tool_calls", 2)


class TestRecordError:
    def test_sets_status_and_records_exception(self):
        span = MagicMock()
        exc = RuntimeError("boom")
        record_error(span, exc)

        span.set_status.assert_called_once_with(StatusCode.ERROR, "boom")
        span.record_exception.assert_called_once_with(exc)
        span.set_attribute.assert_called_once_with("error.type", "RuntimeError")

    def test_noop_on_none_span(self):
        record_error(None, RuntimeError("boom"))


# -------------------------------------------------------------------
# Aggregator integration
# -------------------------------------------------------------------


class TestAggregatorSpans:
    @pytest.mark.asyncio
    async def test_successful_stream_records_usage(self, mock_tracer):
        _, span = mock_tracer
        frames = agen([text_delta(0, "hi"), message_stop(3, 4)])

        await StreamAggregator(system="bedrock").collect(frames)

        span.set_attribute.assert_any_call("gen_ai.usage.input_tokens", 3)
        span.set_attribute.assert_any_call("gen_ai.usage.output_tokens", 4)
        span.set_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_parse_failure_recorded_on_span(self, mock_tracer):
        _, span = mock_tracer
        frames = agen([tool_start(0, "t1", "f"), json_delta(0, '{"a"'), message_stop()])

        with pytest.raises(ToolCallParseError):
            await StreamAggregator().collect(frames)

        span.set_attribute.assert_any_call("error.type", "ToolCallParseError")
