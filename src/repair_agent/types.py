"""Shared trace and conversation records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

from repair_agent.schemas import (
    Asset,
    ManualSpecification,
    Part,
    RepairGuide,
    Supplier,
    WorkOrder,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    """One message of the conversation history."""

    role: Literal["user", "assistant"]
    text: str


@dataclass(frozen=True, slots=True)
class FilterStep:
    """One narrowing predicate applied during a catalog search."""

    filter_name: str
    value: str
    remaining_count: int


@dataclass(frozen=True, slots=True)
class ScoreEntry:
    label: str
    score: float


@dataclass(frozen=True, slots=True)
class RetrievalTrace:
    """How a manual-section search produced its results.

    `count_above_threshold` counts every scored candidate at or above the
    threshold before the top-K cut, so it can exceed the number of results
    returned. In keyword mode it is 0.
    """

    mode: Literal["vector", "keyword"]
    corpus_size: int
    candidates_after_metadata_filter: int
    query_text: str
    top_scores: tuple[ScoreEntry, ...]
    threshold: float
    count_above_threshold: int
    top_k: int
    reason: str | None = None


@dataclass(slots=True)
class ScoredSection:
    """A manual section returned by retrieval, with its similarity score."""

    manual_id: str
    manual_title: str
    section_id: str
    section_title: str
    content: str
    score: float
    specifications: list[ManualSpecification] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """Trace record for an executed tool call."""

    tool_name: str
    input_echo: dict[str, Any]
    result_count: int
    latency_ms: float
    timestamp: str
    filter_steps: tuple[FilterStep, ...] | None = None
    retrieval_trace: RetrievalTrace | None = None
    error: str | None = None


@dataclass(slots=True)
class ToolOutcome(Generic[T]):
    """Typed tool output plus the instrumentation the registry records."""

    value: T
    result_count: int
    filter_steps: list[FilterStep] | None = None
    retrieval_trace: RetrievalTrace | None = None


@dataclass(slots=True)
class ResearchOutputs:
    """Everything the tools returned for one request, fed to formatting."""

    asset: Asset | None = None
    history: list[WorkOrder] = field(default_factory=list)
    sections: list[ScoredSection] = field(default_factory=list)
    retrieval_trace: RetrievalTrace | None = None
    parts: list[Part] = field(default_factory=list)
    suppliers: list[Supplier] = field(default_factory=list)
    guide: RepairGuide | None = None
