"""Optional OpenTelemetry instrumentation for streamfold.

Call ``streamfold.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; the library works
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "streamfold") -> None:
    """Enable OpenTelemetry tracing for every folded stream.

    Call once at startup, after configuring your TracerProvider.
    Requires ``opentelemetry-api``: ``pip install streamfold[otel]``

    Example::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())

        import streamfold
        streamfold.instrument()

    Args:
        tracer_name: Name passed to ``trace.get_tracer()``.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install streamfold[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured, spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("Streamfold instrumentation enabled")


def uninstrument() -> None:
    """Disable OpenTelemetry tracing."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def stream_span(system: str, model: str | None = None):
    """Wrap one stream fold in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    attributes = {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
    }
    if model:
        attributes["gen_ai.request.model"] = model
    with _tracer.start_as_current_span(
        f"chat {model or system}",
        kind=SpanKind.CLIENT,
        attributes=attributes,
    ) as span:
        yield span


def record_usage(span, usage, response_model: str | None = None):
    """Set token-usage and response-model attributes on a span."""
    if span is None:
        return
    if usage is not None:
        span.set_attribute(
            "gen_ai.usage.input_tokens", usage.input_tokens
        )
        span.set_attribute(
            "gen_ai.usage.output_tokens", usage.output_tokens
        )
    if response_model:
        span.set_attribute(
            "gen_ai.response.model", response_model
        )


def record_finish(span, stop_reason: str | None, tool_calls: int) -> None:
    """Record the stop reason and number of finished tool calls."""
    if span is None:
        return
    if stop_reason:
        span.set_attribute(
            "gen_ai.response.finish_reasons", [stop_reason]
        )
    span.set_attribute("streamfold.tool_calls", tool_calls)


def record_error(span, exception: BaseException) -> None:
    """Record an exception and set ERROR status on a span.

    No-ops when *span* is ``None`` (tracing disabled).
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
