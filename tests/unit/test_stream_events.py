from repair_agent.obs.events import (
    Complete,
    PhaseMarker,
    TextChunk,
    ToolDone,
    bind_event_sink,
    emit,
    event_to_dict,
)
from repair_agent.obs.metrics import MetricsCollector
from repair_agent.schemas import StructuredResponse


def test_events_serialize_as_tagged_records() -> None:
    assert event_to_dict(ToolDone("search_parts", 2, 14.0)) == {
        "tool_name": "search_parts",
        "result_count": 2,
        "latency_ms": 14.0,
        "type": "tool_done",
    }
    assert event_to_dict(TextChunk("Replace the fan.")) == {
        "text": "Replace the fan.",
        "type": "text_chunk",
    }


def test_complete_event_dumps_response_and_metrics() -> None:
    response = StructuredResponse.clarification("Which model?")
    metrics = MetricsCollector(request_id="req-9").finalize("help", response)

    record = event_to_dict(Complete(response=response, metrics=metrics))

    assert record["type"] == "complete"
    assert record["response"]["message"] == "Which model?"
    assert record["metrics"]["request_id"] == "req-9"


def test_emit_without_sink_is_a_no_op() -> None:
    emit(PhaseMarker("extracting"))


def test_sink_is_unbound_after_context() -> None:
    events = []
    with bind_event_sink(events.append):
        emit(PhaseMarker("extracting"))
    emit(PhaseMarker("researching"))

    assert events == [PhaseMarker("extracting")]
