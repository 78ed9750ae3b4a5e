"""Per-request telemetry collection, persistence, and aggregation."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from repair_agent.obs.events import ToolDone, emit
from repair_agent.schemas import StructuredResponse
from repair_agent.types import FilterStep, RetrievalTrace, ToolCallRecord

logger = logging.getLogger(__name__)

_active_collector: ContextVar["MetricsCollector | None"] = ContextVar(
    "repair_agent_active_collector", default=None
)


def active_collector() -> "MetricsCollector | None":
    """Return the collector bound to the current request context, if any."""
    return _active_collector.get()


@contextmanager
def bind_collector(collector: "MetricsCollector") -> Iterator["MetricsCollector"]:
    """Attach `collector` for the duration of one request.

    The binding lives in a ContextVar, so concurrent requests running on the
    same event loop each see their own collector.
    """
    token = _active_collector.set(collector)
    try:
        yield collector
    finally:
        _active_collector.reset(token)


@dataclass(frozen=True, slots=True)
class RequestMetrics:
    request_id: str
    timestamp: str
    input: str
    tool_calls: tuple[ToolCallRecord, ...]
    total_tool_calls: int
    tool_sequence: tuple[str, ...]
    confidence: str | None
    response_type: str
    part_found: bool
    recommended_part_number: str | None
    supplier_count: int
    alternative_count: int
    warning_count: int
    total_latency_ms: float
    avg_tool_latency_ms: float


@dataclass(frozen=True, slots=True)
class AggregateMetrics:
    total_requests: int = 0
    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    avg_tool_calls: float = 0.0
    part_found_rate: float = 0.0
    confidence_distribution: dict[str, int] = field(default_factory=dict)
    tool_usage_count: dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """Accumulates tool calls for one request and finalizes them once."""

    def __init__(
        self,
        *,
        request_id: str | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.request_id = request_id or str(uuid.uuid4())
        self._clock = clock
        self._start = clock()
        self._tool_calls: list[ToolCallRecord] = []
        self._finalized: RequestMetrics | None = None

    def record_tool_call(
        self,
        tool_name: str,
        input_echo: dict[str, Any],
        result_count: int,
        latency_ms: float,
        *,
        filter_steps: Sequence[FilterStep] | None = None,
        retrieval_trace: RetrievalTrace | None = None,
        error: str | None = None,
    ) -> ToolCallRecord:
        """Append one tool invocation and emit a `tool_done` event."""
        if self._finalized is not None:
            raise RuntimeError(f"Collector {self.request_id} is already finalized")
        record = ToolCallRecord(
            tool_name=tool_name,
            input_echo=dict(input_echo),
            result_count=result_count,
            latency_ms=latency_ms,
            timestamp=datetime.now(timezone.utc).isoformat(),
            filter_steps=tuple(filter_steps) if filter_steps is not None else None,
            retrieval_trace=retrieval_trace,
            error=error,
        )
        self._tool_calls.append(record)
        emit(ToolDone(tool_name=tool_name, result_count=result_count, latency_ms=latency_ms))
        return record

    @property
    def tool_call_count(self) -> int:
        return len(self._tool_calls)

    @property
    def tool_calls(self) -> tuple[ToolCallRecord, ...]:
        return tuple(self._tool_calls)

    @property
    def is_finalized(self) -> bool:
        return self._finalized is not None

    def finalize(self, input_text: str, response: StructuredResponse) -> RequestMetrics:
        """Produce the immutable metrics snapshot. May only be called once."""
        if self._finalized is not None:
            raise RuntimeError(f"Collector {self.request_id} is already finalized")

        total_latency_ms = (self._clock() - self._start) * 1000.0
        calls = tuple(self._tool_calls)
        avg_tool_latency_ms = (
            sum(call.latency_ms for call in calls) / len(calls) if calls else 0.0
        )
        part = response.recommended_part

        metrics = RequestMetrics(
            request_id=self.request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            input=input_text,
            tool_calls=calls,
            total_tool_calls=len(calls),
            tool_sequence=tuple(call.tool_name for call in calls),
            confidence=response.confidence,
            response_type=response.type,
            part_found=part is not None,
            recommended_part_number=part.part_number if part is not None else None,
            supplier_count=len(response.supplier_ranking),
            alternative_count=len(response.alternative_parts),
            warning_count=len(response.warnings),
            total_latency_ms=total_latency_ms,
            avg_tool_latency_ms=avg_tool_latency_ms,
        )
        self._finalized = metrics

        logger.info(
            "Request %s completed in %.0fms: %d tool calls, confidence=%s, part found=%s",
            self.request_id,
            total_latency_ms,
            len(calls),
            response.confidence,
            metrics.part_found,
        )
        logger.info(
            json.dumps(
                {
                    "message": "agent_request_complete",
                    "agent": {
                        "requestId": self.request_id,
                        "totalLatencyMs": round(total_latency_ms),
                        "totalToolCalls": len(calls),
                        "avgToolLatencyMs": round(avg_tool_latency_ms),
                        "confidence": response.confidence,
                        "partFound": metrics.part_found,
                        "supplierCount": metrics.supplier_count,
                        "warningCount": metrics.warning_count,
                        "toolSequence": list(metrics.tool_sequence),
                    },
                }
            )
        )
        return metrics


class MetricsStore:
    """In-memory, append-only metrics storage keyed by request id.

    Holds at most `max_records` entries; the oldest are evicted first.
    """

    def __init__(self, max_records: int = 10_000) -> None:
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self.max_records = max_records
        self._records: dict[str, RequestMetrics] = {}

    def save(self, metrics: RequestMetrics) -> None:
        if metrics.request_id in self._records:
            raise ValueError(f"Metrics already stored: {metrics.request_id}")
        self._records[metrics.request_id] = metrics
        while len(self._records) > self.max_records:
            del self._records[next(iter(self._records))]

    def get(self, request_id: str) -> RequestMetrics:
        record = self._records.get(request_id)
        if record is None:
            raise KeyError(f"Metrics not found: {request_id}")
        return record

    def list_recent(self, limit: int = 50) -> list[RequestMetrics]:
        """Most recent first."""
        if limit <= 0:
            return []
        return list(reversed(list(self._records.values())[-limit:]))

    def __len__(self) -> int:
        return len(self._records)


def aggregate_metrics(batch: Sequence[RequestMetrics]) -> AggregateMetrics:
    """Aggregate request metrics for dashboard display."""
    total = len(batch)
    if total == 0:
        return AggregateMetrics()

    latencies = sorted(record.total_latency_ms for record in batch)
    p95_index = max(0, int((len(latencies) * 0.95) - 1))

    confidence_distribution: dict[str, int] = {}
    tool_usage_count: dict[str, int] = {}
    for record in batch:
        # Clarifications carry no confidence; tally them so counts sum to total.
        key = record.confidence or "none"
        confidence_distribution[key] = confidence_distribution.get(key, 0) + 1
        for tool_name in record.tool_sequence:
            tool_usage_count[tool_name] = tool_usage_count.get(tool_name, 0) + 1

    return AggregateMetrics(
        total_requests=total,
        avg_latency_ms=float(round(sum(latencies) / total)),
        p95_latency_ms=latencies[p95_index],
        avg_tool_calls=round(sum(record.total_tool_calls for record in batch) / total, 1),
        part_found_rate=round(
            sum(1 for record in batch if record.part_found) / total * 100.0, 1
        ),
        confidence_distribution=confidence_distribution,
        tool_usage_count=tool_usage_count,
    )


class Timer:
    """Simple context timer used around tool calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
