"""Tool registry built on Pydantic v2 models, instrumented for telemetry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from repair_agent.obs.metrics import Timer, active_collector
from repair_agent.types import ToolOutcome

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], ToolOutcome[Any]]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, data: BaseModel) -> ToolOutcome[Any]:
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs and records every execution into the active collector.

    The collector is looked up per call from the request context, so one
    registry can serve concurrent requests without cross-attribution.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return spec

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def execute(self, name: str, payload: dict[str, Any]) -> Any:
        """Validate `payload`, run the tool, record it, and return its value."""
        spec = self.get(name)
        data = spec.args_schema.model_validate(payload)
        timer = Timer()
        try:
            with timer:
                outcome = spec.invoke(data)
        except Exception as exc:
            self._record_failure(spec, data, timer.elapsed_ms, exc)
            raise
        self._record(spec, data, outcome, timer.elapsed_ms)
        return outcome.value

    async def aexecute(self, name: str, payload: dict[str, Any]) -> Any:
        """Async variant: the handler runs in a worker thread.

        Recording happens back on the event loop so the collector and any
        stream sink are only touched from one thread.
        """
        spec = self.get(name)
        data = spec.args_schema.model_validate(payload)
        timer = Timer()
        try:
            with timer:
                outcome = await asyncio.to_thread(spec.invoke, data)
        except Exception as exc:
            self._record_failure(spec, data, timer.elapsed_ms, exc)
            raise
        self._record(spec, data, outcome, timer.elapsed_ms)
        return outcome.value

    def _record(
        self, spec: ToolSpec, data: BaseModel, outcome: ToolOutcome[Any], latency_ms: float
    ) -> None:
        logger.info("[%s] %d results (%.0fms)", spec.name, outcome.result_count, latency_ms)
        collector = active_collector()
        if collector is None:
            return
        collector.record_tool_call(
            spec.name,
            data.model_dump(exclude_none=True),
            outcome.result_count,
            latency_ms,
            filter_steps=outcome.filter_steps,
            retrieval_trace=outcome.retrieval_trace,
        )

    def _record_failure(
        self, spec: ToolSpec, data: BaseModel, latency_ms: float, exc: Exception
    ) -> None:
        logger.warning("[%s] failed after %.0fms: %s", spec.name, latency_ms, exc)
        collector = active_collector()
        if collector is None:
            return
        collector.record_tool_call(
            spec.name,
            data.model_dump(exclude_none=True),
            0,
            latency_ms,
            error=type(exc).__name__,
        )
