from collections.abc import Sequence

import pytest
from pydantic import BaseModel

from repair_agent.agent.catalog import InMemoryCatalog
from repair_agent.agent.completion import CompletionResult
from repair_agent.agent.formatting import (
    ResponseFormatter,
    build_fallback_response,
    rank_suppliers,
    supplier_score,
)
from repair_agent.agent.retry import RetryPolicy
from repair_agent.config import CatalogConfig
from repair_agent.schemas import (
    ManualReference,
    RecommendedPart,
    StructuredResponse,
    Supplier,
    SupplierRank,
)
from repair_agent.types import ConversationTurn, ResearchOutputs, ScoredSection


class _StaticCompletion:
    def __init__(self, structured_output: BaseModel | None = None, error: Exception | None = None) -> None:
        self.structured_output = structured_output
        self.error = error

    async def complete(
        self,
        system_instruction: str,
        history: Sequence[ConversationTurn],
        prompt: str,
        output_schema: type[BaseModel] | None = None,
    ) -> CompletionResult:
        if self.error is not None:
            raise self.error
        return CompletionResult(text="", structured_output=self.structured_output)


async def _no_sleep(seconds: float) -> None:
    return None


def _outputs(catalog: InMemoryCatalog) -> ResearchOutputs:
    parts = catalog.list_parts()
    top = parts[0]
    return ResearchOutputs(
        asset=catalog.list_assets()[0],
        history=catalog.list_work_orders("asset_4302"),
        sections=[
            ScoredSection(
                manual_id="manual_evita_v500",
                manual_title="Evita V500 Service Manual",
                section_id="ev500_3_7",
                section_title="Fan Module Replacement",
                content="Error 57 indicates the cooling fan module is not spinning. "
                "Replace the fan module assembly and run the fan self-test.",
                score=0.82,
            )
        ],
        parts=[top, parts[1]],
        suppliers=catalog.get_suppliers(top.supplier_ids),
        guide=catalog.get_repair_guide(top.id),
    )


def _grounded_response(catalog: InMemoryCatalog, **overrides: object) -> StructuredResponse:
    top = catalog.list_parts()[0]
    fields: dict[str, object] = {
        "type": "diagnosis",
        "message": "Error 57 points to the fan module.",
        "manual_references": [
            ManualReference(
                manual_id="manual_evita_v500",
                section_id="ev500_3_7",
                section_title="Fan Module Replacement",
                quoted_text="Error 57 indicates the cooling fan module is not spinning.",
            )
        ],
        "diagnosis": "Fan module failure",
        "recommended_part": RecommendedPart(
            name=top.name,
            part_number=top.part_number,
            description=top.description,
            avg_price=top.avg_price,
            criticality=top.criticality,
        ),
        "repair_guide": None,
        "supplier_ranking": [
            SupplierRank(
                supplier_name="MedParts Direct",
                quality_score=95.0,
                delivery_days=2.0,
                reasoning="Best quality",
            )
        ],
        "alternative_parts": [],
        "confidence": "high",
        "reasoning": "Error code match.",
        "warnings": [],
    }
    fields.update(overrides)
    return StructuredResponse(**fields)


def test_supplier_weights_switch_for_critical_parts() -> None:
    supplier = Supplier(
        id="s", name="S", quality_score=80, avg_delivery_days=2.5, return_rate=0.05
    )

    assert supplier_score(supplier, "low") == pytest.approx(0.8 * 0.5 + 0.5 * 0.3 + 0.5 * 0.2)
    assert supplier_score(supplier, "critical") == pytest.approx(
        0.8 * 0.6 + 0.5 * 0.25 + 0.5 * 0.15
    )


def test_supplier_components_are_clamped() -> None:
    slow = Supplier(id="s", name="S", quality_score=100, avg_delivery_days=9, return_rate=0.3)

    assert supplier_score(slow, "medium") == pytest.approx(0.5)


def test_rank_suppliers_orders_by_weighted_score(catalog: InMemoryCatalog) -> None:
    ranking = rank_suppliers(catalog.get_suppliers(["sup_003", "sup_002", "sup_001"]), "high")

    assert [rank.supplier_name for rank in ranking] == [
        "MedParts Direct",
        "BioEquip Supply",
        "Budget Biomed",
    ]
    assert ranking[0].quality_score == 95.0
    assert ranking[0].delivery_days == 2.0


def test_fallback_uses_top_part_verbatim(catalog: InMemoryCatalog) -> None:
    outputs = _outputs(catalog)

    response = build_fallback_response(outputs, reason="test", max_alternatives=3)

    top = outputs.parts[0]
    assert response.type == "diagnosis"
    assert response.confidence == "medium"
    assert response.recommended_part is not None
    assert response.recommended_part.part_number == top.part_number
    assert response.recommended_part.avg_price == top.avg_price
    assert [alt.part_number for alt in response.alternative_parts] == ["PHI-453564243681"]
    assert response.repair_guide is not None
    assert response.equipment_asset is not None
    assert response.equipment_asset.asset_tag == "ASSET-4302"
    assert any("verify compatibility" in w for w in response.warnings)
    assert "1 earlier replacement" in response.message


def test_fallback_without_parts_is_low_confidence_guidance(catalog: InMemoryCatalog) -> None:
    outputs = _outputs(catalog)
    outputs.parts = []
    outputs.suppliers = []
    outputs.guide = None

    response = build_fallback_response(outputs, reason="no parts")

    assert response.type == "guidance"
    assert response.confidence == "low"
    assert response.recommended_part is None
    assert response.manual_references[0].section_id == "ev500_3_7"


def test_fallback_quotes_are_truncated(catalog: InMemoryCatalog) -> None:
    response = build_fallback_response(
        _outputs(catalog), reason="test", catalog_config=CatalogConfig(quote_chars=40)
    )

    quote = response.manual_references[0].quoted_text
    assert quote.endswith("...")
    assert len(quote) <= 43


@pytest.mark.asyncio
async def test_grounded_response_is_returned_with_asset(catalog: InMemoryCatalog) -> None:
    formatter = ResponseFormatter(
        _StaticCompletion(_grounded_response(catalog)), RetryPolicy(sleep=_no_sleep)
    )

    response = await formatter.format([], "Evita error 57", _outputs(catalog))

    assert response.confidence == "high"
    assert response.equipment_asset is not None
    assert response.equipment_asset.asset_id == "asset_4302"


@pytest.mark.asyncio
async def test_fabricated_part_number_triggers_fallback(catalog: InMemoryCatalog) -> None:
    invented = RecommendedPart(
        name="Fan Module Assembly",
        part_number="DRG-0000000",
        description="made up",
        avg_price=10.0,
        criticality="high",
    )
    formatter = ResponseFormatter(
        _StaticCompletion(_grounded_response(catalog, recommended_part=invented)),
        RetryPolicy(sleep=_no_sleep),
    )

    response = await formatter.format([], "Evita error 57", _outputs(catalog))

    assert response.recommended_part is not None
    assert response.recommended_part.part_number == "DRG-8306750"
    assert response.confidence == "medium"


@pytest.mark.asyncio
async def test_missing_structured_output_triggers_fallback(catalog: InMemoryCatalog) -> None:
    formatter = ResponseFormatter(_StaticCompletion(None), RetryPolicy(sleep=_no_sleep))

    response = await formatter.format([], "Evita error 57", _outputs(catalog))

    assert response.reasoning is not None
    assert "no valid structured output" in response.reasoning


@pytest.mark.asyncio
async def test_completion_error_triggers_fallback(catalog: InMemoryCatalog) -> None:
    formatter = ResponseFormatter(
        _StaticCompletion(error=ConnectionError("socket closed")), RetryPolicy(sleep=_no_sleep)
    )

    response = await formatter.format([], "Evita error 57", _outputs(catalog))

    assert response.type == "diagnosis"
    assert response.confidence == "medium"
