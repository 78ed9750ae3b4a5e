"""Deterministic diagnostic orchestrator: extraction, research, formatting."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from repair_agent.agent.catalog import CatalogStore
from repair_agent.agent.completion import CompletionService
from repair_agent.agent.extraction import ExtractedQuery, QueryExtractor
from repair_agent.agent.formatting import ResponseFormatter
from repair_agent.agent.prompts import (
    CLARIFICATION_MESSAGE,
    FAILED_MESSAGE,
    NON_MEDICAL_MESSAGE,
    PART_SEARCH_FAILED_MESSAGE,
    RATE_LIMITED_MESSAGE,
)
from repair_agent.agent.registry import ToolRegistry
from repair_agent.agent.retry import RetryPolicy
from repair_agent.agent.tools import (
    GET_REPAIR_GUIDE,
    GET_REPAIR_HISTORY,
    GET_SUPPLIERS,
    LOOKUP_ASSET,
    SEARCH_MANUAL,
    SEARCH_PARTS,
    register_builtin_tools,
)
from repair_agent.config import AgentConfig, CatalogConfig, RetrievalConfig
from repair_agent.errors import CriticalToolFailure, RetryExhaustedError
from repair_agent.ingest.embedder import Embedder, HashingEmbedder
from repair_agent.obs.events import (
    Complete,
    ErrorEvent,
    PhaseMarker,
    StreamEvent,
    TextChunk,
    bind_event_sink,
    emit,
)
from repair_agent.obs.metrics import MetricsCollector, MetricsStore, RequestMetrics, bind_collector
from repair_agent.retrieval.retriever import SectionRetriever
from repair_agent.retrieval.vector_store import SectionStore
from repair_agent.schemas import StructuredResponse
from repair_agent.types import ConversationTurn, ResearchOutputs

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    EXTRACTING = "extracting"
    CLARIFYING = "clarifying"
    NON_MEDICAL_GUIDANCE = "non_medical_guidance"
    RESEARCHING = "researching"
    FORMATTING = "formatting"
    RESPONDING = "responding"
    FAILED = "failed"


_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.EXTRACTING: frozenset(
        {
            AgentState.CLARIFYING,
            AgentState.NON_MEDICAL_GUIDANCE,
            AgentState.RESEARCHING,
            AgentState.FAILED,
        }
    ),
    AgentState.RESEARCHING: frozenset({AgentState.FORMATTING, AgentState.FAILED}),
    AgentState.FORMATTING: frozenset({AgentState.RESPONDING, AgentState.FAILED}),
}

TERMINAL_STATES = frozenset(
    {
        AgentState.CLARIFYING,
        AgentState.NON_MEDICAL_GUIDANCE,
        AgentState.RESPONDING,
        AgentState.FAILED,
    }
)


@dataclass(frozen=True, slots=True)
class AgentResult:
    response: StructuredResponse
    metrics: RequestMetrics
    state: AgentState


class _Run:
    """Mutable state for one request; never shared."""

    def __init__(self) -> None:
        self.state = AgentState.EXTRACTING

    def advance(self, target: AgentState) -> None:
        if target not in _TRANSITIONS.get(self.state, frozenset()):
            raise RuntimeError(f"Illegal transition {self.state.value} -> {target.value}")
        logger.debug("State %s -> %s", self.state.value, target.value)
        self.state = target
        emit(PhaseMarker(phase=target.value))


class DiagnosticOrchestrator:
    """Runs one conversation turn through a fixed tool sequence.

    Tool selection is rule-based, not model-driven:
    1. asset lookup, then repair history for the resolved asset
    2. manual search and part search, concurrently
    3. suppliers and repair guide for the top part, concurrently

    Every request gets its own MetricsCollector bound to the task context,
    and always ends with a valid StructuredResponse.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        extractor: QueryExtractor,
        formatter: ResponseFormatter,
        metrics_store: MetricsStore | None = None,
    ) -> None:
        self.registry = registry
        self.extractor = extractor
        self.formatter = formatter
        self.metrics_store = metrics_store if metrics_store is not None else MetricsStore()

    @classmethod
    def create(
        cls,
        *,
        completion: CompletionService,
        catalog: CatalogStore,
        sections: SectionStore,
        embedder: Embedder | None = None,
        agent_config: AgentConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
        catalog_config: CatalogConfig | None = None,
        metrics_store: MetricsStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "DiagnosticOrchestrator":
        agent_config = agent_config or AgentConfig()
        catalog_config = catalog_config or CatalogConfig()
        registry = ToolRegistry()
        register_builtin_tools(
            registry,
            catalog,
            sections,
            SectionRetriever(embedder or HashingEmbedder(), retrieval_config),
            config=catalog_config,
        )
        retry_policy = RetryPolicy.from_config(agent_config, sleep=sleep)
        return cls(
            registry=registry,
            extractor=QueryExtractor(completion, retry_policy),
            formatter=ResponseFormatter(
                completion,
                retry_policy,
                catalog_config=catalog_config,
                agent_config=agent_config,
            ),
            metrics_store=metrics_store,
        )

    async def respond(self, history: Sequence[ConversationTurn]) -> AgentResult:
        """Answer the last user turn of `history`."""
        if not history or history[-1].role != "user":
            raise ValueError("Conversation must end with a user turn")
        current_text = history[-1].text

        collector = MetricsCollector()
        run = _Run()
        emit(PhaseMarker(phase=run.state.value))
        with bind_collector(collector):
            response = await self._run(run, list(history[:-1]), current_text)
        metrics = collector.finalize(current_text, response)
        self.metrics_store.save(metrics)
        return AgentResult(response=response, metrics=metrics, state=run.state)

    async def stream(self, history: Sequence[ConversationTurn]) -> AsyncIterator[StreamEvent]:
        """Yield phase, tool, text and completion events in emission order."""
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()

        async def _produce() -> None:
            with bind_event_sink(queue.put_nowait):
                try:
                    result = await self.respond(history)
                except Exception:
                    logger.exception("Streaming request failed")
                    emit(ErrorEvent(message=FAILED_MESSAGE))
                else:
                    for chunk in split_narration(result.response.message):
                        emit(TextChunk(text=chunk))
                    emit(Complete(response=result.response, metrics=result.metrics))
                finally:
                    queue.put_nowait(None)

        producer = asyncio.create_task(_produce())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            await producer

    async def _run(
        self, run: _Run, prior: list[ConversationTurn], current_text: str
    ) -> StructuredResponse:
        try:
            extracted = await self.extractor.extract(prior, current_text)
            if extracted is not None and extracted.is_non_medical:
                run.advance(AgentState.NON_MEDICAL_GUIDANCE)
                return StructuredResponse.guidance(
                    NON_MEDICAL_MESSAGE,
                    confidence="low",
                    reasoning="The request is not about hospital or medical equipment.",
                )
            if extracted is None or extracted.needs_clarification:
                run.advance(AgentState.CLARIFYING)
                message = CLARIFICATION_MESSAGE
                if extracted is not None and extracted.clarification_message:
                    message = extracted.clarification_message
                return StructuredResponse.clarification(
                    message, reasoning="Not enough information to diagnose."
                )

            run.advance(AgentState.RESEARCHING)
            outputs = await self._research(extracted)

            run.advance(AgentState.FORMATTING)
            response = await self.formatter.format(prior, current_text, outputs)
            run.advance(AgentState.RESPONDING)
            return response
        except RetryExhaustedError as exc:
            logger.warning("Giving up after rate limiting: %s", exc)
            run.advance(AgentState.FAILED)
            return StructuredResponse.clarification(RATE_LIMITED_MESSAGE)
        except CriticalToolFailure as exc:
            logger.error("Critical tool failure: %s", exc)
            run.advance(AgentState.FAILED)
            return StructuredResponse.guidance(
                PART_SEARCH_FAILED_MESSAGE,
                confidence="low",
                reasoning="The parts catalog search failed.",
            )
        except Exception:
            logger.exception("Unexpected error while handling request")
            run.advance(AgentState.FAILED)
            return StructuredResponse.clarification(FAILED_MESSAGE)

    async def _research(self, query: ExtractedQuery) -> ResearchOutputs:
        outputs = ResearchOutputs()

        criteria = _asset_criteria(query)
        if criteria:
            assets = await self._optional(LOOKUP_ASSET, criteria, [])
            if len(assets) == 1 or (assets and query.asset_tag):
                outputs.asset = assets[0]
                outputs.history = await self._optional(
                    GET_REPAIR_HISTORY, {"asset_id": assets[0].asset_id}, []
                )

        manufacturer = query.manufacturer
        equipment_name = query.equipment_name
        if outputs.asset is not None:
            manufacturer = manufacturer or outputs.asset.manufacturer
            equipment_name = equipment_name or outputs.asset.equipment_name

        manual_result, parts_result = await asyncio.gather(
            self._optional(
                SEARCH_MANUAL,
                {
                    "manufacturer": manufacturer,
                    "equipment_name": equipment_name,
                    "keyword": query.error_code or query.symptom,
                },
                ([], None),
            ),
            self.registry.aexecute(
                SEARCH_PARTS,
                {
                    "manufacturer": manufacturer,
                    "equipment_name": equipment_name,
                    "error_code": query.error_code,
                    "symptom": query.symptom,
                },
            ),
            return_exceptions=True,
        )
        if isinstance(parts_result, BaseException):
            raise CriticalToolFailure(SEARCH_PARTS, parts_result) from parts_result
        outputs.sections, outputs.retrieval_trace = manual_result
        outputs.parts = parts_result

        if outputs.parts:
            top = outputs.parts[0]
            outputs.suppliers, outputs.guide = await asyncio.gather(
                self._optional(GET_SUPPLIERS, {"supplier_ids": top.supplier_ids}, []),
                self._optional(GET_REPAIR_GUIDE, {"part_id": top.id}, None),
            )
        return outputs

    async def _optional(self, name: str, payload: dict[str, Any], default: Any) -> Any:
        try:
            return await self.registry.aexecute(name, payload)
        except Exception as exc:
            logger.warning("[%s] non-critical failure, continuing with empty result: %s", name, exc)
            return default


def _asset_criteria(query: ExtractedQuery) -> dict[str, str]:
    if query.asset_tag:
        return {"asset_tag": query.asset_tag}
    if query.department and query.equipment_name:
        return {"department": query.department, "equipment_name": query.equipment_name}
    return {}


def split_narration(text: str, max_chars: int = 80) -> list[str]:
    """Split a message into word-aligned chunks for `text_chunk` events."""
    chunks: list[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}" if current else word
        if current and len(candidate) > max_chars:
            chunks.append(current + " ")
            current = word
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks
