"""Manual-section indexing: build embedding text -> embed -> SectionEmbedding."""

from __future__ import annotations

import logging

from repair_agent.ingest.embedder import Embedder
from repair_agent.schemas import ManualSection, SectionEmbedding, ServiceManual

logger = logging.getLogger(__name__)


def build_embedding_text(manual: ServiceManual, section: ManualSection) -> str:
    """Capture what a section is about in a single string.

    The manual context prefix disambiguates similarly titled sections across
    manuals. Specifications, warnings and steps are appended because
    technicians search for torque values and safety notes directly.
    """
    parts = [
        f"[{manual.manufacturer} {manual.equipment_name}]",
        f"[Section: {section.title}]",
        section.content,
    ]
    if section.specifications:
        spec_text = "; ".join(
            f"{spec.parameter}: {spec.value} {spec.unit}".rstrip()
            + (f" ({spec.tolerance})" if spec.tolerance else "")
            for spec in section.specifications
        )
        parts.append(f"[Specifications: {spec_text}]")
    if section.warnings:
        parts.append(f"[Warnings: {' '.join(section.warnings)}]")
    if section.steps:
        parts.append(f"[Steps: {' '.join(section.steps)}]")
    return "\n".join(parts)


class SectionIndexer:
    """Embeds every section of a set of service manuals.

    Indexing runs offline; query-time retrieval only reads the resulting
    `SectionEmbedding` records.
    """

    def __init__(self, embedder: Embedder) -> None:
        self._embedder = embedder

    def index(self, manuals: list[ServiceManual]) -> list[SectionEmbedding]:
        pairs = [(manual, section) for manual in manuals for section in manual.sections]
        if not pairs:
            return []

        texts = [build_embedding_text(manual, section) for manual, section in pairs]
        vectors = self._embedder.embed_documents(texts)
        if len(vectors) != len(pairs):
            raise ValueError("embedder returned a different number of vectors than texts")

        records = [
            SectionEmbedding(
                manual_id=manual.manual_id,
                manual_title=manual.title,
                section_id=section.section_id,
                section_title=section.title,
                manufacturer=manual.manufacturer,
                equipment_name=manual.equipment_name,
                content=section.content,
                specifications=section.specifications,
                warnings=section.warnings,
                steps=section.steps,
                tools=section.tools,
                embedded_text=text,
                embedding=vector,
            )
            for (manual, section), text, vector in zip(pairs, texts, vectors, strict=True)
        ]
        logger.info("Indexed %d sections from %d manuals", len(records), len(manuals))
        return records
