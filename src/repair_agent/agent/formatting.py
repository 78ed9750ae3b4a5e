"""Formatting stage: structured completion, grounding check, deterministic fallback."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from repair_agent.agent.completion import CompletionService
from repair_agent.agent.grounding import GroundingChecker
from repair_agent.agent.prompts import (
    FORMATTING_SYSTEM_PROMPT,
    VERIFY_COMPATIBILITY_WARNING,
    build_formatting_prompt,
)
from repair_agent.agent.retry import RetryPolicy
from repair_agent.config import AgentConfig, CatalogConfig
from repair_agent.errors import RetryExhaustedError
from repair_agent.schemas import (
    AlternativePart,
    Asset,
    EquipmentAssetSummary,
    ManualReference,
    Part,
    RecommendedPart,
    RepairGuide,
    RepairGuideSummary,
    StructuredResponse,
    Supplier,
    SupplierRank,
)
from repair_agent.types import ConversationTurn, ResearchOutputs, ScoredSection

logger = logging.getLogger(__name__)

_DEFAULT_WEIGHTS = (0.5, 0.3, 0.2)
_HIGH_CRITICALITY_WEIGHTS = (0.6, 0.25, 0.15)
_HIGH_CRITICALITY = frozenset({"critical", "high"})


def supplier_score(supplier: Supplier, criticality: str) -> float:
    """Weighted supplier score in [0, 1]: quality, delivery speed, return rate."""
    quality_weight, delivery_weight, return_weight = (
        _HIGH_CRITICALITY_WEIGHTS if criticality in _HIGH_CRITICALITY else _DEFAULT_WEIGHTS
    )
    quality = supplier.quality_score / 100.0
    delivery = _clamp(1.0 - supplier.avg_delivery_days / 5.0)
    returns = _clamp(1.0 - supplier.return_rate / 0.1)
    return quality * quality_weight + delivery * delivery_weight + returns * return_weight


def rank_suppliers(suppliers: Sequence[Supplier], criticality: str) -> list[SupplierRank]:
    scored = sorted(
        ((supplier, supplier_score(supplier, criticality)) for supplier in suppliers),
        key=lambda item: item[1],
        reverse=True,
    )
    ranking: list[SupplierRank] = []
    for supplier, score in scored:
        notes = [
            f"Weighted score {score:.2f}",
            f"quality {supplier.quality_score:g}/100",
            f"{supplier.avg_delivery_days:g}-day delivery",
            f"{supplier.return_rate:.1%} return rate",
        ]
        if supplier.is_oem:
            notes.append("OEM")
        notes.append("in stock" if supplier.in_stock else "backordered")
        ranking.append(
            SupplierRank(
                supplier_name=supplier.name,
                quality_score=float(supplier.quality_score),
                delivery_days=float(supplier.avg_delivery_days),
                reasoning=", ".join(notes),
            )
        )
    return ranking


def build_fallback_response(
    outputs: ResearchOutputs,
    *,
    reason: str,
    catalog_config: CatalogConfig | None = None,
    max_alternatives: int = 3,
) -> StructuredResponse:
    """Rebuild a minimal response from raw tool data.

    The top part is used verbatim and no value is introduced that the tools
    did not return. Confidence never exceeds "medium".
    """
    catalog_config = catalog_config or CatalogConfig()
    references = [
        _manual_reference(section, catalog_config.quote_chars) for section in outputs.sections
    ]
    asset = _asset_summary(outputs.asset) if outputs.asset is not None else None
    reasoning = f"Assembled directly from tool results ({reason})."

    if not outputs.parts:
        message = (
            "I couldn't find a matching replacement part in the catalog; the part may not be "
            "listed yet."
        )
        if references:
            message += f" The most relevant manual section is \"{references[0].section_title}\"."
        return StructuredResponse(
            type="guidance",
            message=message,
            manual_references=references,
            diagnosis=None,
            recommended_part=None,
            repair_guide=None,
            supplier_ranking=[],
            alternative_parts=[],
            confidence="low",
            reasoning=reasoning,
            warnings=_section_warnings(outputs.sections),
            equipment_asset=asset,
        )

    top = outputs.parts[0]
    warnings: list[str] = []
    if top.criticality in _HIGH_CRITICALITY:
        warnings.append(VERIFY_COMPATIBILITY_WARNING.format(criticality=top.criticality))
    if outputs.guide is not None:
        warnings.extend(w for w in outputs.guide.safety_warnings if w not in warnings)

    ranking = rank_suppliers(outputs.suppliers, top.criticality)
    message = f"The most likely replacement is the {top.name} ({top.part_number})."
    if ranking:
        message += f" Top-ranked supplier: {ranking[0].supplier_name}."
    previous = _previous_replacements(outputs, top)
    if previous:
        message += f" Repair history shows {previous} earlier replacement(s) of this part on this unit."
    if references:
        message += f" See \"{references[0].section_title}\" in the service manual."

    return StructuredResponse(
        type="diagnosis",
        message=message,
        manual_references=references,
        diagnosis=f"Likely failure of the {top.name}.",
        recommended_part=RecommendedPart(
            name=top.name,
            part_number=top.part_number,
            description=top.description,
            avg_price=float(top.avg_price),
            criticality=top.criticality,
        ),
        repair_guide=_guide_summary(outputs.guide) if outputs.guide is not None else None,
        supplier_ranking=ranking,
        alternative_parts=[
            AlternativePart(
                name=part.name,
                part_number=part.part_number,
                reason="Also matches the search criteria.",
            )
            for part in outputs.parts[1 : 1 + max_alternatives]
        ],
        confidence="medium",
        reasoning=reasoning,
        warnings=warnings,
        equipment_asset=asset,
    )


class ResponseFormatter:
    """Produces the final StructuredResponse from conversation plus tool outputs."""

    def __init__(
        self,
        completion: CompletionService,
        retry_policy: RetryPolicy,
        *,
        grounding: GroundingChecker | None = None,
        catalog_config: CatalogConfig | None = None,
        agent_config: AgentConfig | None = None,
    ) -> None:
        self.completion = completion
        self.retry_policy = retry_policy
        self.grounding = grounding or GroundingChecker()
        self.catalog_config = catalog_config or CatalogConfig()
        self.agent_config = agent_config or AgentConfig()

    async def format(
        self,
        history: Sequence[ConversationTurn],
        current_text: str,
        outputs: ResearchOutputs,
    ) -> StructuredResponse:
        prompt = build_formatting_prompt(
            current_text, json.dumps(tool_data_payload(outputs), indent=2)
        )
        try:
            result = await self.retry_policy.call(
                lambda: self.completion.complete(
                    FORMATTING_SYSTEM_PROMPT, history, prompt, StructuredResponse
                ),
                label="formatting",
            )
        except RetryExhaustedError:
            raise
        except Exception as exc:
            logger.warning("Formatting completion failed: %s", exc)
            return self._fallback(outputs, f"formatting completion failed: {type(exc).__name__}")

        response = result.structured_output
        if not isinstance(response, StructuredResponse):
            return self._fallback(outputs, "formatting returned no valid structured output")

        report = self.grounding.check(response, outputs)
        if not report.grounded:
            logger.warning("Grounding violations: %s", "; ".join(report.violations))
            return self._fallback(outputs, "formatted response was not grounded in tool data")

        if response.equipment_asset is None and outputs.asset is not None:
            response = response.model_copy(
                update={"equipment_asset": _asset_summary(outputs.asset)}
            )
        return response

    def _fallback(self, outputs: ResearchOutputs, reason: str) -> StructuredResponse:
        logger.warning("Using deterministic fallback response: %s", reason)
        return build_fallback_response(
            outputs,
            reason=reason,
            catalog_config=self.catalog_config,
            max_alternatives=self.agent_config.max_alternatives,
        )


def tool_data_payload(outputs: ResearchOutputs) -> dict[str, Any]:
    """JSON-ready view of the tool outputs handed to the formatting prompt."""
    return {
        "asset": outputs.asset.model_dump() if outputs.asset is not None else None,
        "repair_history": [order.model_dump() for order in outputs.history],
        "manual_sections": [
            {
                "manual_id": section.manual_id,
                "manual_title": section.manual_title,
                "section_id": section.section_id,
                "section_title": section.section_title,
                "content": section.content,
                "score": round(section.score, 4),
                "specifications": [spec.model_dump() for spec in section.specifications],
                "warnings": section.warnings,
                "steps": section.steps,
                "tools": section.tools,
            }
            for section in outputs.sections
        ],
        "parts": [part.model_dump() for part in outputs.parts],
        "suppliers": [supplier.model_dump() for supplier in outputs.suppliers],
        "repair_guide": outputs.guide.model_dump() if outputs.guide is not None else None,
    }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _manual_reference(section: ScoredSection, limit: int) -> ManualReference:
    content = " ".join(section.content.split())
    if len(content) > limit:
        content = content[:limit].rsplit(" ", 1)[0] + "..."
    return ManualReference(
        manual_id=section.manual_id,
        section_id=section.section_id,
        section_title=section.section_title,
        quoted_text=content,
        page_hint=None,
    )


def _section_warnings(sections: Sequence[ScoredSection]) -> list[str]:
    warnings: list[str] = []
    for section in sections:
        warnings.extend(w for w in section.warnings if w not in warnings)
    return warnings


def _previous_replacements(outputs: ResearchOutputs, part: Part) -> int:
    return sum(
        1
        for order in outputs.history
        if any(used.part_number == part.part_number for used in order.parts_used)
    )


def _guide_summary(guide: RepairGuide) -> RepairGuideSummary:
    return RepairGuideSummary(
        title=guide.title,
        estimated_time=guide.estimated_time,
        difficulty=guide.difficulty,
        safety_warnings=list(guide.safety_warnings),
        steps=list(guide.steps),
        tools=list(guide.tools),
    )


def _asset_summary(asset: Asset) -> EquipmentAssetSummary:
    return EquipmentAssetSummary(
        asset_id=asset.asset_id,
        asset_tag=asset.asset_tag,
        department=asset.department,
        location=asset.location,
        hours_logged=asset.hours_logged,
        warranty_expiry=asset.warranty_expiry,
        status=asset.status,
    )
