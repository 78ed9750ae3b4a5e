"""Catalog store contract, in-memory adapter, and part filtering."""

from __future__ import annotations

from typing import Any, Protocol, get_args

from pydantic import BaseModel, ValidationInfo, field_validator

from repair_agent.schemas import Asset, Part, RepairGuide, Supplier, WorkOrder
from repair_agent.types import FilterStep

_SENTINELS = frozenset({"null", "none", "n/a"})


def clean_optional(value: str | None) -> str | None:
    """Map completion-service placeholders ("null", "none", "N/A", blanks) to None."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped or stripped.lower() in _SENTINELS:
        return None
    return stripped


class CatalogStore(Protocol):
    """Read-only record source behind the domain lookup tools."""

    def list_parts(self) -> list[Part]:
        """All parts, in stable catalog order."""

    def get_suppliers(self, supplier_ids: list[str]) -> list[Supplier]:
        """Suppliers for the given ids, skipping unknown ids."""

    def get_repair_guide(self, part_id: str) -> RepairGuide | None:
        """The replacement guide for a part, if one exists."""

    def list_assets(self) -> list[Asset]:
        """All equipment assets."""

    def list_work_orders(self, asset_id: str) -> list[WorkOrder]:
        """Work orders recorded against one asset."""


class InMemoryCatalog:
    """Deterministic catalog used for tests and local runs."""

    def __init__(
        self,
        *,
        parts: list[Part] | None = None,
        suppliers: list[Supplier] | None = None,
        repair_guides: list[RepairGuide] | None = None,
        assets: list[Asset] | None = None,
        work_orders: list[WorkOrder] | None = None,
    ) -> None:
        self._parts = list(parts or [])
        self._suppliers = {supplier.id: supplier for supplier in suppliers or []}
        self._guides = {guide.part_id: guide for guide in repair_guides or []}
        self._assets = list(assets or [])
        self._work_orders = list(work_orders or [])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryCatalog":
        return cls(
            parts=[Part.model_validate(item) for item in data.get("parts", [])],
            suppliers=[Supplier.model_validate(item) for item in data.get("suppliers", [])],
            repair_guides=[
                RepairGuide.model_validate(item) for item in data.get("repair_guides", [])
            ],
            assets=[Asset.model_validate(item) for item in data.get("assets", [])],
            work_orders=[WorkOrder.model_validate(item) for item in data.get("work_orders", [])],
        )

    def list_parts(self) -> list[Part]:
        return list(self._parts)

    def get_suppliers(self, supplier_ids: list[str]) -> list[Supplier]:
        return [self._suppliers[sid] for sid in supplier_ids if sid in self._suppliers]

    def get_repair_guide(self, part_id: str) -> RepairGuide | None:
        return self._guides.get(part_id)

    def list_assets(self) -> list[Asset]:
        return list(self._assets)

    def list_work_orders(self, asset_id: str) -> list[WorkOrder]:
        return [order for order in self._work_orders if order.asset_id == asset_id]


class CleanedInput(BaseModel):
    """Tool input whose optional strings are normalized at the boundary."""

    @field_validator("*", mode="before")
    @classmethod
    def _drop_sentinels(cls, value: Any, info: ValidationInfo) -> Any:
        if not isinstance(value, str):
            return value
        cleaned = clean_optional(value)
        if cleaned is not None:
            return cleaned
        field = cls.model_fields[info.field_name]
        if field.is_required() or type(None) in get_args(field.annotation):
            return None
        # A placeholder for a defaulted non-optional field (a flag) means "not given".
        return field.get_default(call_default_factory=True)


class PartFilters(CleanedInput):
    manufacturer: str | None = None
    category: str | None = None
    equipment_name: str | None = None
    error_code: str | None = None
    symptom: str | None = None


def filter_parts(parts: list[Part], filters: PartFilters) -> tuple[list[Part], list[FilterStep]]:
    """Apply the part-search predicates as a sequential narrowing pipeline.

    Order: manufacturer -> category -> equipment name -> error code -> symptom.
    Each applied predicate appends a FilterStep with the surviving count.
    """
    results = list(parts)
    steps: list[FilterStep] = []

    manufacturer = filters.manufacturer
    if manufacturer:
        term = manufacturer.lower()
        results = [part for part in results if part.manufacturer.lower() == term]
        steps.append(FilterStep("manufacturer", manufacturer, len(results)))

    category = filters.category
    if category:
        term = category.lower()
        results = [part for part in results if part.category.lower() == term]
        steps.append(FilterStep("category", category, len(results)))

    equipment_name = filters.equipment_name
    if equipment_name:
        term = equipment_name.lower()
        results = [
            part
            for part in results
            if any(term in equipment.lower() for equipment in part.compatible_equipment)
        ]
        steps.append(FilterStep("equipment_name", equipment_name, len(results)))

    error_code = filters.error_code
    if error_code:
        term = error_code.lower()
        results = [
            part
            for part in results
            if any(term in code.lower() for code in part.related_error_codes)
        ]
        steps.append(FilterStep("error_code", error_code, len(results)))

    symptom = filters.symptom
    if symptom:
        matched = [part for part in results if _matches_symptom(part, symptom)]
        # Soft match: a symptom that would empty the set is skipped and the
        # pre-symptom set is kept. Intentional; not a strict intersection.
        if matched:
            results = matched
        steps.append(FilterStep("symptom", symptom, len(results)))

    return results, steps


def _matches_symptom(part: Part, symptom: str) -> bool:
    haystack = f"{part.name} {part.description}".lower()
    words = [word for word in symptom.lower().split() if len(word) > 2]
    if not words:
        return symptom.lower() in haystack
    return any(word in haystack for word in words)
