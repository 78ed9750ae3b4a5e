import pytest

from repair_agent.agent.catalog import InMemoryCatalog
from repair_agent.agent.fallback import RuleBasedCompletionService
from repair_agent.agent.orchestrator import DiagnosticOrchestrator
from repair_agent.evaluation import (
    CaseScore,
    EvalCase,
    EvalCaseResult,
    run_suite,
    score_case,
    summarize,
)
from repair_agent.retrieval.vector_store import InMemorySectionStore


async def _no_sleep(seconds: float) -> None:
    return None


def _case(**overrides: object) -> EvalCase:
    fields: dict[str, object] = {
        "id": "tc-1",
        "name": "Evita fan failure",
        "input": "Drager Evita V500 showing error 57, fan not spinning",
        "expected_part_number": "DRG-8306750",
        "expected_confidence": "medium",
        "must_call_tools": ["search_manual", "search_parts"],
    }
    fields.update(overrides)
    return EvalCase(**fields)


def _result(case: EvalCase, score: CaseScore, latency_ms: float) -> EvalCaseResult:
    return EvalCaseResult(
        case=case,
        score=score,
        actual_part_number=None,
        actual_confidence="low",
        actual_tool_sequence=(),
        latency_ms=latency_ms,
    )


def test_score_case_checks_part_confidence_and_tools() -> None:
    case = _case()

    good = score_case(case, "DRG-8306750", "medium", ["search_parts", "search_manual"])
    wrong_part = score_case(case, "PHI-453564243681", "medium", ["search_manual", "search_parts"])
    missing_tool = score_case(case, "DRG-8306750", "medium", ["search_parts"])

    assert good.passed
    assert not wrong_part.part_match
    assert not missing_tool.tools_compliant
    assert not missing_tool.passed


def test_case_without_expected_part_matches_anything() -> None:
    case = _case(expected_part_number=None, expected_confidence="low", must_call_tools=[])

    assert score_case(case, "DRG-8306750", "low", []).part_match
    assert score_case(case, None, "low", []).passed


def test_summary_percentages_and_latency() -> None:
    case = _case()
    passing = CaseScore(True, True, True)
    failing = CaseScore(True, False, True)

    summary = summarize(
        [
            _result(case, passing, 1000.0),
            _result(case, passing, 2001.0),
            _result(case, failing, 0.0),
        ]
    )

    assert summary.total_cases == 3
    assert summary.passed == 2
    assert summary.failed == 1
    assert summary.pass_rate == 66.7
    assert summary.part_accuracy == 100.0
    assert summary.confidence_accuracy == 66.7
    # zero-latency results are excluded from the average
    assert summary.avg_latency_ms == 1500


def test_empty_summary() -> None:
    summary = summarize([])

    assert summary.total_cases == 0
    assert summary.pass_rate == 0.0
    assert summary.avg_latency_ms == 0


@pytest.mark.asyncio
async def test_run_suite_against_offline_agent(
    catalog: InMemoryCatalog, section_store: InMemorySectionStore
) -> None:
    orchestrator = DiagnosticOrchestrator.create(
        completion=RuleBasedCompletionService.from_stores(catalog, section_store),
        catalog=catalog,
        sections=section_store,
        sleep=_no_sleep,
    )
    cases = [
        _case(),
        _case(
            id="tc-2",
            name="Off-domain request",
            input="the break room coffee maker stopped working",
            expected_part_number=None,
            expected_confidence="low",
            must_call_tools=[],
        ),
        _case(id="tc-3", name="Overconfident expectation", expected_confidence="high"),
    ]

    summary = await run_suite(orchestrator, cases)

    assert [result.passed for result in summary.results] == [True, True, False]
    assert summary.results[0].actual_part_number == "DRG-8306750"
    assert summary.results[1].actual_tool_sequence == ()
    assert summary.pass_rate == 66.7


class _CrashingOrchestrator:
    async def respond(self, history: object) -> object:
        raise RuntimeError("store offline")


@pytest.mark.asyncio
async def test_crashing_case_is_scored_as_failed() -> None:
    summary = await run_suite(_CrashingOrchestrator(), [_case()])  # type: ignore[arg-type]

    (result,) = summary.results
    assert not result.passed
    assert result.error == "store offline"
    assert result.actual_confidence == "unknown"
