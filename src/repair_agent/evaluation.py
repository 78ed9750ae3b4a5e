"""Offline evaluation harness: score agent answers against expected outcomes."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from repair_agent.agent.orchestrator import DiagnosticOrchestrator
from repair_agent.schemas import Confidence
from repair_agent.types import ConversationTurn

logger = logging.getLogger(__name__)


class EvalCase(BaseModel):
    id: str
    name: str
    input: str = Field(min_length=1)
    expected_part_number: str | None = None
    expected_confidence: Confidence
    must_call_tools: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CaseScore:
    part_match: bool
    confidence_match: bool
    tools_compliant: bool

    @property
    def passed(self) -> bool:
        return self.part_match and self.confidence_match and self.tools_compliant


@dataclass(frozen=True, slots=True)
class EvalCaseResult:
    case: EvalCase
    score: CaseScore
    actual_part_number: str | None
    actual_confidence: str
    actual_tool_sequence: tuple[str, ...]
    latency_ms: float
    error: str | None = None

    @property
    def passed(self) -> bool:
        return self.score.passed


@dataclass(frozen=True, slots=True)
class EvalRunSummary:
    run_id: str
    timestamp: str
    total_cases: int
    passed: int
    failed: int
    pass_rate: float
    part_accuracy: float
    confidence_accuracy: float
    avg_latency_ms: int
    results: tuple[EvalCaseResult, ...] = field(default_factory=tuple)


def score_case(
    case: EvalCase,
    actual_part_number: str | None,
    actual_confidence: str | None,
    actual_tool_sequence: Sequence[str],
) -> CaseScore:
    """A case with no expected part matches any part (including none)."""
    if case.expected_part_number is None:
        part_match = True
    else:
        part_match = actual_part_number == case.expected_part_number
    return CaseScore(
        part_match=part_match,
        confidence_match=actual_confidence == case.expected_confidence,
        tools_compliant=all(tool in actual_tool_sequence for tool in case.must_call_tools),
    )


def summarize(results: Sequence[EvalCaseResult]) -> EvalRunSummary:
    total = len(results)
    passed = sum(1 for result in results if result.passed)

    def _percent(count: int) -> float:
        return round(count / total * 100.0, 1) if total else 0.0

    latencies = [result.latency_ms for result in results if result.latency_ms > 0]
    return EvalRunSummary(
        run_id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc).isoformat(),
        total_cases=total,
        passed=passed,
        failed=total - passed,
        pass_rate=_percent(passed),
        part_accuracy=_percent(sum(1 for result in results if result.score.part_match)),
        confidence_accuracy=_percent(
            sum(1 for result in results if result.score.confidence_match)
        ),
        avg_latency_ms=round(sum(latencies) / len(latencies)) if latencies else 0,
        results=tuple(results),
    )


async def run_suite(
    orchestrator: DiagnosticOrchestrator, cases: Sequence[EvalCase]
) -> EvalRunSummary:
    """Run every case sequentially; a crashing case is scored as failed."""
    results: list[EvalCaseResult] = []
    for case in cases:
        try:
            outcome = await orchestrator.respond([ConversationTurn(role="user", text=case.input)])
        except Exception as exc:
            logger.error("[%s] %s crashed: %s", case.id, case.name, exc)
            results.append(
                EvalCaseResult(
                    case=case,
                    score=CaseScore(False, False, False),
                    actual_part_number=None,
                    actual_confidence="unknown",
                    actual_tool_sequence=(),
                    latency_ms=0.0,
                    error=str(exc),
                )
            )
            continue

        metrics = outcome.metrics
        score = score_case(
            case, metrics.recommended_part_number, metrics.confidence, metrics.tool_sequence
        )
        logger.info("[%s] %s: %s", case.id, case.name, "PASS" if score.passed else "FAIL")
        results.append(
            EvalCaseResult(
                case=case,
                score=score,
                actual_part_number=metrics.recommended_part_number,
                actual_confidence=metrics.confidence or "none",
                actual_tool_sequence=metrics.tool_sequence,
                latency_ms=metrics.total_latency_ms,
            )
        )

    summary = summarize(results)
    logger.info(
        "Eval run %s: %d/%d passed (%.1f%%), part accuracy %.1f%%, confidence accuracy %.1f%%",
        summary.run_id,
        summary.passed,
        summary.total_cases,
        summary.pass_rate,
        summary.part_accuracy,
        summary.confidence_accuracy,
    )
    return summary
