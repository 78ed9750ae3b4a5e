"""Streaming events and the request-scoped event sink."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Literal, Union

if TYPE_CHECKING:
    from repair_agent.obs.metrics import RequestMetrics
    from repair_agent.schemas import StructuredResponse


@dataclass(frozen=True, slots=True)
class ToolDone:
    tool_name: str
    result_count: int
    latency_ms: float
    type: Literal["tool_done"] = "tool_done"


@dataclass(frozen=True, slots=True)
class TextChunk:
    text: str
    type: Literal["text_chunk"] = "text_chunk"


@dataclass(frozen=True, slots=True)
class PhaseMarker:
    phase: str
    type: Literal["phase_marker"] = "phase_marker"


@dataclass(frozen=True, slots=True)
class Complete:
    response: "StructuredResponse"
    metrics: "RequestMetrics"
    type: Literal["complete"] = "complete"


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    type: Literal["error"] = "error"


StreamEvent = Union[ToolDone, TextChunk, PhaseMarker, Complete, ErrorEvent]
EventSink = Callable[[StreamEvent], None]

_active_sink: ContextVar[EventSink | None] = ContextVar("repair_agent_event_sink", default=None)


@contextmanager
def bind_event_sink(sink: EventSink | None) -> Iterator[None]:
    """Route events emitted in this context (and its child tasks) to `sink`."""
    token = _active_sink.set(sink)
    try:
        yield
    finally:
        _active_sink.reset(token)


def emit(event: StreamEvent) -> None:
    sink = _active_sink.get()
    if sink is not None:
        sink(event)


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """Serialize an event into a small tagged record for the wire."""
    if isinstance(event, Complete):
        return {
            "type": event.type,
            "response": event.response.model_dump(),
            "metrics": asdict(event.metrics),
        }
    return asdict(event)
