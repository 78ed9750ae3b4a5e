"""Grounding checks: every concrete value in a response must come from tool data."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from repair_agent.schemas import StructuredResponse
from repair_agent.types import ResearchOutputs, ScoredSection

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class GroundingReport:
    claims_checked: int = 0
    violations: list[str] = field(default_factory=list)

    @property
    def grounded(self) -> bool:
        return not self.violations

    @property
    def score(self) -> float:
        if self.claims_checked == 0:
            return 1.0
        return (self.claims_checked - len(self.violations)) / self.claims_checked


class GroundingChecker:
    """Compares a structured response against the tool outputs it was built from.

    Checked claims:
    - recommended and alternative parts: part number exists; name and price match
    - supplier ranking: supplier exists; quality score and delivery days match
    - manual references: section was retrieved; quoted text appears in it
    - repair guide and equipment asset: match the looked-up record

    Free-text fields (message, diagnosis, reasoning) are not scored.
    """

    def __init__(self, price_tolerance: float = 0.005) -> None:
        self.price_tolerance = price_tolerance

    def check(self, response: StructuredResponse, outputs: ResearchOutputs) -> GroundingReport:
        report = GroundingReport()
        parts = {part.part_number: part for part in outputs.parts}

        recommended = response.recommended_part
        if recommended is not None:
            report.claims_checked += 1
            part = parts.get(recommended.part_number)
            if part is None:
                report.violations.append(f"unknown part number {recommended.part_number}")
            elif part.name != recommended.name:
                report.violations.append(f"part name mismatch for {recommended.part_number}")
            elif abs(part.avg_price - recommended.avg_price) > self.price_tolerance:
                report.violations.append(f"price mismatch for {recommended.part_number}")

        for alternative in response.alternative_parts:
            report.claims_checked += 1
            if alternative.part_number not in parts:
                report.violations.append(
                    f"unknown alternative part number {alternative.part_number}"
                )

        suppliers = {supplier.name: supplier for supplier in outputs.suppliers}
        for rank in response.supplier_ranking:
            report.claims_checked += 1
            supplier = suppliers.get(rank.supplier_name)
            if supplier is None:
                report.violations.append(f"unknown supplier {rank.supplier_name}")
            elif (
                supplier.quality_score != rank.quality_score
                or supplier.avg_delivery_days != rank.delivery_days
            ):
                report.violations.append(f"supplier figures altered for {rank.supplier_name}")

        sections = {(section.manual_id, section.section_id): section for section in outputs.sections}
        for reference in response.manual_references:
            report.claims_checked += 1
            section = sections.get((reference.manual_id, reference.section_id))
            if section is None:
                report.violations.append(
                    f"section {reference.manual_id}/{reference.section_id} was not retrieved"
                )
            elif not _quote_in_section(reference.quoted_text, section):
                report.violations.append(
                    f"quoted text not found in {reference.manual_id}/{reference.section_id}"
                )

        if response.repair_guide is not None:
            report.claims_checked += 1
            if outputs.guide is None or outputs.guide.title != response.repair_guide.title:
                report.violations.append("repair guide was not returned by the guide lookup")

        if response.equipment_asset is not None:
            report.claims_checked += 1
            if outputs.asset is None or outputs.asset.asset_id != response.equipment_asset.asset_id:
                report.violations.append("equipment asset was not returned by the asset lookup")

        return report


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip().lower()


def _quote_in_section(quoted_text: str, section: ScoredSection) -> bool:
    quote = _normalize(quoted_text.removesuffix("...").removesuffix("…"))
    if not quote:
        return False
    sources = [section.content, *section.steps, *section.warnings]
    return any(quote in _normalize(source) for source in sources)
