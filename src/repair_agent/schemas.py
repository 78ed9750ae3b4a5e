"""Pydantic models for catalog records and the structured agent response."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Criticality = Literal["low", "medium", "high", "critical"]
Confidence = Literal["high", "medium", "low"]
ResponseType = Literal["diagnosis", "clarification", "guidance", "photo_analysis"]


# ---------------------------------------------------------------------------
# Catalog records
# ---------------------------------------------------------------------------


class Part(BaseModel):
    id: str
    name: str
    part_number: str
    category: str
    manufacturer: str
    compatible_equipment: list[str] = Field(default_factory=list)
    related_error_codes: list[str] = Field(default_factory=list)
    description: str = ""
    avg_price: float
    criticality: Criticality
    supplier_ids: list[str] = Field(default_factory=list)


class Supplier(BaseModel):
    id: str
    name: str
    quality_score: float = Field(ge=0.0, le=100.0)
    avg_delivery_days: float = Field(ge=0.0)
    return_rate: float = Field(ge=0.0)
    specialties: list[str] = Field(default_factory=list)
    is_oem: bool = False
    in_stock: bool = True


class RepairGuide(BaseModel):
    part_id: str
    part_number: str
    title: str
    estimated_time: str
    difficulty: Literal["easy", "moderate", "advanced"]
    safety_warnings: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)


class ManualSpecification(BaseModel):
    parameter: str
    value: str
    unit: str = ""
    tolerance: str | None = None


class ManualSection(BaseModel):
    section_id: str
    title: str
    content: str
    specifications: list[ManualSpecification] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)


class ServiceManual(BaseModel):
    manual_id: str
    title: str
    manufacturer: str
    equipment_name: str
    compatible_models: list[str] = Field(default_factory=list)
    revision: str = ""
    sections: list[ManualSection] = Field(default_factory=list)


class SectionEmbedding(BaseModel):
    """One indexed manual section with its stored vector."""

    manual_id: str
    manual_title: str
    section_id: str
    section_title: str
    manufacturer: str
    equipment_name: str
    content: str
    specifications: list[ManualSpecification] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    tools: list[str] = Field(default_factory=list)
    embedded_text: str = ""
    embedding: list[float] = Field(default_factory=list)


class Asset(BaseModel):
    asset_id: str
    asset_tag: str
    equipment_name: str
    manufacturer: str
    serial_number: str = ""
    department: str = ""
    location: str = ""
    install_date: str = ""
    warranty_expiry: str = ""
    hours_logged: float = 0.0
    status: Literal["active", "down", "maintenance", "retired"] = "active"
    last_pm_date: str = ""
    next_pm_due: str = ""


class WorkOrderPart(BaseModel):
    part_number: str
    part_name: str
    quantity: int = 1


class WorkOrder(BaseModel):
    work_order_id: str
    asset_id: str
    equipment_name: str
    manufacturer: str = ""
    created_at: str = ""
    completed_at: str | None = None
    status: str = ""
    priority: str = ""
    diagnosis: str = ""
    root_cause: str | None = None
    parts_used: list[WorkOrderPart] = Field(default_factory=list)
    labor_hours: float = 0.0
    total_cost: float = 0.0


# ---------------------------------------------------------------------------
# Structured response
# ---------------------------------------------------------------------------


class ManualReference(BaseModel):
    manual_id: str
    section_id: str
    section_title: str
    quoted_text: str
    page_hint: str | None = None


class RecommendedPart(BaseModel):
    name: str
    part_number: str
    description: str
    avg_price: float = Field(strict=True)
    criticality: str


class RepairGuideSummary(BaseModel):
    title: str
    estimated_time: str
    difficulty: str
    safety_warnings: list[str]
    steps: list[str]
    tools: list[str]


class SupplierRank(BaseModel):
    supplier_name: str
    quality_score: float = Field(strict=True)
    delivery_days: float = Field(strict=True)
    reasoning: str


class AlternativePart(BaseModel):
    name: str
    part_number: str
    reason: str


class EquipmentAssetSummary(BaseModel):
    asset_id: str
    asset_tag: str
    department: str
    location: str
    hours_logged: float
    warranty_expiry: str
    status: str


class StructuredResponse(BaseModel):
    """Fixed-schema answer returned for every request.

    Arrays are required so a completion that omits them fails validation
    instead of silently producing an empty list.
    """

    model_config = ConfigDict(frozen=True)

    type: ResponseType
    message: str = Field(min_length=1)
    manual_references: list[ManualReference]
    diagnosis: str | None
    recommended_part: RecommendedPart | None
    repair_guide: RepairGuideSummary | None
    supplier_ranking: list[SupplierRank]
    alternative_parts: list[AlternativePart]
    confidence: Confidence | None
    reasoning: str | None
    warnings: list[str]
    equipment_asset: EquipmentAssetSummary | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "StructuredResponse":
        if self.type != "clarification" and self.confidence is None:
            raise ValueError(f"confidence is required for {self.type} responses")
        if self.recommended_part is not None and not self.diagnosis:
            raise ValueError("recommended_part requires a diagnosis")
        return self

    @classmethod
    def clarification(cls, message: str, *, reasoning: str | None = None) -> "StructuredResponse":
        return cls(
            type="clarification",
            message=message,
            manual_references=[],
            diagnosis=None,
            recommended_part=None,
            repair_guide=None,
            supplier_ranking=[],
            alternative_parts=[],
            confidence=None,
            reasoning=reasoning,
            warnings=[],
        )

    @classmethod
    def guidance(
        cls,
        message: str,
        *,
        confidence: Confidence = "low",
        reasoning: str | None = None,
        warnings: list[str] | None = None,
    ) -> "StructuredResponse":
        return cls(
            type="guidance",
            message=message,
            manual_references=[],
            diagnosis=None,
            recommended_part=None,
            repair_guide=None,
            supplier_ranking=[],
            alternative_parts=[],
            confidence=confidence,
            reasoning=reasoning,
            warnings=list(warnings or []),
        )
