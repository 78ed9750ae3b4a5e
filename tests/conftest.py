from typing import Any

import pytest

from repair_agent.agent.catalog import InMemoryCatalog
from repair_agent.ingest.embedder import HashingEmbedder
from repair_agent.ingest.sections import SectionIndexer
from repair_agent.retrieval.vector_store import InMemorySectionStore
from repair_agent.schemas import ServiceManual

CATALOG_DATA: dict[str, Any] = {
    "parts": [
        {
            "id": "part_001",
            "name": "Fan Module Assembly",
            "part_number": "DRG-8306750",
            "category": "ventilators",
            "manufacturer": "Drager",
            "compatible_equipment": ["Evita V500", "Evita V300"],
            "related_error_codes": ["Error 57", "Error 58"],
            "description": "Cooling fan module; failure causes fan not spinning and overheating.",
            "avg_price": 1245.0,
            "criticality": "high",
            "supplier_ids": ["sup_001", "sup_002", "sup_003"],
        },
        {
            "id": "part_002",
            "name": "LCD Display Assembly",
            "part_number": "PHI-453564243681",
            "category": "monitors",
            "manufacturer": "Philips",
            "compatible_equipment": ["IntelliVue MX800"],
            "related_error_codes": ["Display Fail"],
            "description": "Replacement LCD panel for black screen or no display output.",
            "avg_price": 2890.0,
            "criticality": "medium",
            "supplier_ids": ["sup_002"],
        },
        {
            "id": "part_003",
            "name": "X-Ray Tube",
            "part_number": "GE-2350400-2",
            "category": "imaging",
            "manufacturer": "GE",
            "compatible_equipment": ["Optima CT660"],
            "related_error_codes": ["Tube Arc Fault"],
            "description": "CT x-ray tube for arc faults and mA calibration errors.",
            "avg_price": 185000.0,
            "criticality": "critical",
            "supplier_ids": ["sup_003"],
        },
        {
            "id": "part_004",
            "name": "Battery Pack",
            "part_number": "ZOLL-8019-0535-01",
            "category": "defibrillators",
            "manufacturer": "Zoll",
            "compatible_equipment": ["R Series"],
            "related_error_codes": ["Battery Low"],
            "description": "Rechargeable battery pack; replace when unit won't hold charge.",
            "avg_price": 395.0,
            "criticality": "low",
            "supplier_ids": ["sup_001"],
        },
    ],
    "suppliers": [
        {
            "id": "sup_001",
            "name": "MedParts Direct",
            "quality_score": 95,
            "avg_delivery_days": 2,
            "return_rate": 0.02,
            "specialties": ["ventilators"],
            "is_oem": True,
            "in_stock": True,
        },
        {
            "id": "sup_002",
            "name": "BioEquip Supply",
            "quality_score": 80,
            "avg_delivery_days": 1,
            "return_rate": 0.05,
            "specialties": ["monitors"],
            "is_oem": False,
            "in_stock": True,
        },
        {
            "id": "sup_003",
            "name": "Budget Biomed",
            "quality_score": 60,
            "avg_delivery_days": 6,
            "return_rate": 0.12,
            "specialties": [],
            "is_oem": False,
            "in_stock": False,
        },
    ],
    "repair_guides": [
        {
            "part_id": "part_001",
            "part_number": "DRG-8306750",
            "title": "Evita V500 Fan Module Replacement",
            "estimated_time": "45 minutes",
            "difficulty": "moderate",
            "safety_warnings": ["Disconnect the ventilator from the patient before service."],
            "steps": ["Power down the unit.", "Remove the rear cover.", "Swap the fan module."],
            "tools": ["T20 Torx driver"],
        }
    ],
    "assets": [
        {
            "asset_id": "asset_4302",
            "asset_tag": "ASSET-4302",
            "equipment_name": "Evita V500",
            "manufacturer": "Drager",
            "serial_number": "SN-V500-2847",
            "department": "ICU-3",
            "location": "Bed 12",
            "warranty_expiry": "2027-01-31",
            "hours_logged": 18250,
            "status": "down",
        },
        {
            "asset_id": "asset_5110",
            "asset_tag": "ASSET-5110",
            "equipment_name": "IntelliVue MX800",
            "manufacturer": "Philips",
            "serial_number": "SN-MX800-1193",
            "department": "ICU-3",
            "status": "active",
        },
    ],
    "work_orders": [
        {
            "work_order_id": "wo_1",
            "asset_id": "asset_4302",
            "equipment_name": "Evita V500",
            "created_at": "2025-03-02T10:00:00Z",
            "status": "completed",
            "diagnosis": "Fan module failure",
            "parts_used": [
                {"part_number": "DRG-8306750", "part_name": "Fan Module Assembly", "quantity": 1}
            ],
        },
        {
            "work_order_id": "wo_2",
            "asset_id": "asset_4302",
            "equipment_name": "Evita V500",
            "created_at": "2025-11-15T08:30:00Z",
            "status": "completed",
            "diagnosis": "O2 sensor drift",
        },
        {
            "work_order_id": "wo_3",
            "asset_id": "asset_5110",
            "equipment_name": "IntelliVue MX800",
            "created_at": "2025-06-01T12:00:00Z",
            "status": "completed",
            "diagnosis": "Cracked bezel",
        },
    ],
}

MANUALS_DATA: list[dict[str, Any]] = [
    {
        "manual_id": "manual_evita_v500",
        "title": "Evita V500 Service Manual",
        "manufacturer": "Drager",
        "equipment_name": "Evita V500",
        "compatible_models": ["Evita V300"],
        "revision": "Rev 4",
        "sections": [
            {
                "section_id": "ev500_3_7",
                "title": "Fan Module Replacement",
                "content": "Error 57 indicates the cooling fan module is not spinning. "
                "Replace the fan module assembly and run the fan self-test.",
                "warnings": ["Disconnect mains power before opening the housing."],
                "steps": ["Remove the rear cover.", "Unplug the fan connector."],
                "specifications": [
                    {"parameter": "Fan speed", "value": "3200", "unit": "rpm", "tolerance": "±5%"}
                ],
            },
            {
                "section_id": "ev500_2_1",
                "title": "Oxygen Sensor Calibration",
                "content": "Calibrate the O2 sensor every 24 hours using room air.",
            },
        ],
    },
    {
        "manual_id": "manual_mx800",
        "title": "IntelliVue MX800 Service Guide",
        "manufacturer": "Philips",
        "equipment_name": "IntelliVue MX800",
        "sections": [
            {
                "section_id": "mx800_5_2",
                "title": "Display Troubleshooting",
                "content": "A black screen with the power LED lit points to a failed LCD assembly.",
            }
        ],
    },
]


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog.from_dict(CATALOG_DATA)


@pytest.fixture
def manuals() -> list[ServiceManual]:
    return [ServiceManual.model_validate(item) for item in MANUALS_DATA]


@pytest.fixture
def section_store(manuals: list[ServiceManual]) -> InMemorySectionStore:
    store = InMemorySectionStore(manuals=manuals)
    store.upsert(SectionIndexer(HashingEmbedder()).index(manuals))
    return store
