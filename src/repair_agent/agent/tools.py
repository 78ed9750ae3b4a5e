"""Built-in domain lookup tools for the repair agent."""

from __future__ import annotations

from pydantic import Field, model_validator

from repair_agent.agent.catalog import CatalogStore, CleanedInput, PartFilters, filter_parts
from repair_agent.agent.registry import ToolRegistry, ToolSpec
from repair_agent.config import CatalogConfig
from repair_agent.retrieval.retriever import MetadataFilter, SectionRetriever
from repair_agent.retrieval.vector_store import SectionStore
from repair_agent.schemas import Asset, Part, RepairGuide, Supplier, WorkOrder
from repair_agent.types import RetrievalTrace, ScoredSection, ToolOutcome

SEARCH_PARTS = "search_parts"
SEARCH_MANUAL = "search_manual"
GET_SUPPLIERS = "get_suppliers"
GET_REPAIR_GUIDE = "get_repair_guide"
LOOKUP_ASSET = "lookup_asset"
GET_REPAIR_HISTORY = "get_repair_history"


class SearchPartsInput(PartFilters):
    """Part search filters; every field is optional."""


class SearchManualInput(CleanedInput):
    manufacturer: str | None = None
    equipment_name: str | None = None
    keyword: str | None = None


class GetSuppliersInput(CleanedInput):
    supplier_ids: list[str] = Field(default_factory=list)


class RepairGuideInput(CleanedInput):
    part_id: str = Field(min_length=1)


class LookupAssetInput(CleanedInput):
    asset_tag: str | None = None
    serial_number: str | None = None
    equipment_name: str | None = None
    department: str | None = None

    @model_validator(mode="after")
    def _require_criterion(self) -> "LookupAssetInput":
        if not any((self.asset_tag, self.serial_number, self.equipment_name, self.department)):
            raise ValueError("lookup_asset needs at least one search criterion")
        return self


class RepairHistoryInput(CleanedInput):
    asset_id: str = Field(min_length=1)


def register_builtin_tools(
    registry: ToolRegistry,
    catalog: CatalogStore,
    sections: SectionStore,
    retriever: SectionRetriever,
    *,
    config: CatalogConfig | None = None,
) -> None:
    """Register the six lookup tools used by the orchestrator.

    Tools:
    - `search_parts`: sequential narrowing over the parts catalog.
    - `search_manual`: vector search over indexed manual sections.
    - `get_suppliers`: supplier records for a part's supplier ids.
    - `get_repair_guide`: replacement guide for one part.
    - `lookup_asset`: equipment asset records by tag, serial, model, department.
    - `get_repair_history`: recent work orders for one asset.
    """

    config = config or CatalogConfig()

    def _search_parts(data: SearchPartsInput) -> ToolOutcome[list[Part]]:
        parts, steps = filter_parts(catalog.list_parts(), data)
        return ToolOutcome(parts, len(parts), filter_steps=steps)

    def _search_manual(
        data: SearchManualInput,
    ) -> ToolOutcome[tuple[list[ScoredSection], RetrievalTrace]]:
        query_text = (
            " ".join(
                value
                for value in (data.manufacturer, data.equipment_name, data.keyword)
                if value
            )
            if data.keyword
            else ""
        )
        results, trace = retriever.search(
            query_text,
            MetadataFilter(manufacturer=data.manufacturer, equipment_name=data.equipment_name),
            sections.section_embeddings(),
            manuals=sections.service_manuals(),
            keyword=data.keyword,
        )
        return ToolOutcome((results, trace), len(results), retrieval_trace=trace)

    def _get_suppliers(data: GetSuppliersInput) -> ToolOutcome[list[Supplier]]:
        suppliers = catalog.get_suppliers(data.supplier_ids) if data.supplier_ids else []
        return ToolOutcome(suppliers, len(suppliers))

    def _get_repair_guide(data: RepairGuideInput) -> ToolOutcome[RepairGuide | None]:
        guide = catalog.get_repair_guide(data.part_id)
        return ToolOutcome(guide, 0 if guide is None else 1)

    def _lookup_asset(data: LookupAssetInput) -> ToolOutcome[list[Asset]]:
        assets = catalog.list_assets()
        if data.asset_tag:
            tag = data.asset_tag.lower()
            assets = [asset for asset in assets if asset.asset_tag.lower() == tag]
        if data.department:
            department = data.department.lower()
            assets = [asset for asset in assets if asset.department.lower() == department]
        if data.serial_number:
            serial = data.serial_number.upper()
            assets = [asset for asset in assets if serial in asset.serial_number.upper()]
        if data.equipment_name:
            name = data.equipment_name.lower()
            assets = [asset for asset in assets if name in asset.equipment_name.lower()]
        return ToolOutcome(assets, len(assets))

    def _get_repair_history(data: RepairHistoryInput) -> ToolOutcome[list[WorkOrder]]:
        orders = sorted(
            catalog.list_work_orders(data.asset_id),
            key=lambda order: order.created_at,
            reverse=True,
        )[: config.history_limit]
        return ToolOutcome(orders, len(orders))

    registry.register(
        ToolSpec(
            name=SEARCH_PARTS,
            description="Search the parts catalog by manufacturer, category, equipment, error code, or symptom.",
            args_schema=SearchPartsInput,
            handler=_search_parts,
            tags=["catalog"],
        )
    )
    registry.register(
        ToolSpec(
            name=SEARCH_MANUAL,
            description="Search service manual sections relevant to an equipment model and keyword.",
            args_schema=SearchManualInput,
            handler=_search_manual,
            tags=["retrieval", "rag"],
        )
    )
    registry.register(
        ToolSpec(
            name=GET_SUPPLIERS,
            description="Fetch supplier quality, delivery, and return-rate data.",
            args_schema=GetSuppliersInput,
            handler=_get_suppliers,
            tags=["catalog"],
        )
    )
    registry.register(
        ToolSpec(
            name=GET_REPAIR_GUIDE,
            description="Fetch the step-by-step replacement guide for a part.",
            args_schema=RepairGuideInput,
            handler=_get_repair_guide,
            tags=["catalog"],
        )
    )
    registry.register(
        ToolSpec(
            name=LOOKUP_ASSET,
            description="Look up a hospital equipment asset by tag, serial, model, or department.",
            args_schema=LookupAssetInput,
            handler=_lookup_asset,
            tags=["assets"],
        )
    )
    registry.register(
        ToolSpec(
            name=GET_REPAIR_HISTORY,
            description="Fetch recent work orders for an equipment asset.",
            args_schema=RepairHistoryInput,
            handler=_get_repair_history,
            tags=["assets"],
        )
    )
