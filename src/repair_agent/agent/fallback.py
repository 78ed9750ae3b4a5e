"""Deterministic completion service used when no chat model is configured."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from pydantic import BaseModel

from repair_agent.agent.catalog import CatalogStore
from repair_agent.agent.completion import CompletionResult
from repair_agent.agent.extraction import ExtractedQuery
from repair_agent.agent.prompts import EXTRACTION_PROMPT_PREFIX
from repair_agent.retrieval.vector_store import SectionStore
from repair_agent.types import ConversationTurn

_ERROR_CODE = re.compile(r"\b(?:error|err|code|fault)\s*#?\s*([A-Z]?\d{1,5}[A-Z]?)\b", re.IGNORECASE)
_ASSET_TAG = re.compile(r"\b(ASSET-\d+)\b", re.IGNORECASE)
_UNIT_NUMBER = re.compile(r"\bunit\s+#?(\d{3,6})\b", re.IGNORECASE)
_DEPARTMENT = re.compile(r"\b((?:ICU|OR|ER|NICU|PICU|CCU|PACU)(?:-\d+)?)\b")
_NON_MEDICAL_TERMS = frozenset(
    {
        "coffee",
        "microwave",
        "fridge",
        "refrigerator",
        "toaster",
        "printer",
        "laptop",
        "phone",
        "car",
        "elevator",
        "vending",
    }
)
_WORD = re.compile(r"[a-z0-9]+")


class RuleBasedCompletionService:
    """Offline stand-in for the chat model.

    Extraction matches the message against catalog vocabulary and a few
    patterns (error codes, asset tags, departments). Every other schema gets
    no structured output, so formatting falls back to the deterministic
    response built from tool data.
    """

    def __init__(self, manufacturers: Iterable[str], equipment_names: Iterable[str]) -> None:
        self.manufacturers = sorted({name for name in manufacturers if name}, key=len, reverse=True)
        self.equipment_names = sorted(
            {name for name in equipment_names if name}, key=len, reverse=True
        )

    @classmethod
    def from_stores(cls, catalog: CatalogStore, sections: SectionStore) -> "RuleBasedCompletionService":
        parts = catalog.list_parts()
        manuals = sections.service_manuals()
        assets = catalog.list_assets()
        manufacturers = [part.manufacturer for part in parts]
        manufacturers += [manual.manufacturer for manual in manuals]
        manufacturers += [asset.manufacturer for asset in assets]
        equipment = [name for part in parts for name in part.compatible_equipment]
        equipment += [manual.equipment_name for manual in manuals]
        equipment += [model for manual in manuals for model in manual.compatible_models]
        equipment += [asset.equipment_name for asset in assets]
        return cls(manufacturers, equipment)

    async def complete(
        self,
        system_instruction: str,
        history: Sequence[ConversationTurn],
        prompt: str,
        output_schema: type[BaseModel] | None = None,
    ) -> CompletionResult:
        del system_instruction, history
        if output_schema is ExtractedQuery:
            message = prompt.removeprefix(EXTRACTION_PROMPT_PREFIX)
            return CompletionResult(text="", structured_output=self.extract(message))
        return CompletionResult(text="")

    def extract(self, text: str) -> ExtractedQuery:
        lowered = text.lower()
        manufacturer = _first_contained(self.manufacturers, lowered)
        equipment_name = _first_contained(self.equipment_names, lowered)

        error_match = _ERROR_CODE.search(text)
        error_code = f"Error {error_match.group(1)}" if error_match else None

        asset_match = _ASSET_TAG.search(text)
        unit_match = _UNIT_NUMBER.search(text)
        asset_tag = None
        if asset_match:
            asset_tag = asset_match.group(1).upper()
        elif unit_match:
            asset_tag = f"ASSET-{unit_match.group(1)}"
        department_match = _DEPARTMENT.search(text)

        words = set(_WORD.findall(lowered))
        is_non_medical = bool(words & _NON_MEDICAL_TERMS) and not (manufacturer or equipment_name)
        needs_clarification = not (manufacturer or equipment_name or asset_tag)

        return ExtractedQuery(
            manufacturer=manufacturer,
            equipment_name=equipment_name,
            error_code=error_code,
            symptom=_symptom(lowered, manufacturer, equipment_name, error_match),
            asset_tag=asset_tag,
            department=department_match.group(1) if department_match else None,
            needs_clarification=needs_clarification and not is_non_medical,
            clarification_message=None,
            is_non_medical=is_non_medical,
        )


def _first_contained(candidates: Sequence[str], lowered: str) -> str | None:
    for candidate in candidates:
        if re.search(rf"\b{re.escape(candidate.lower())}\b", lowered):
            return candidate
    return None


def _symptom(
    lowered: str,
    manufacturer: str | None,
    equipment_name: str | None,
    error_match: re.Match[str] | None,
) -> str | None:
    remainder = lowered
    if error_match:
        remainder = remainder.replace(error_match.group(0).lower(), " ")
    for known in (manufacturer, equipment_name):
        if known:
            remainder = remainder.replace(known.lower(), " ")
    remainder = " ".join(_WORD.findall(remainder))
    return remainder or None
