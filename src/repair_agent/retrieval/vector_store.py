"""Section store contract, in-memory adapter, and similarity helpers."""

from __future__ import annotations

from math import sqrt
from typing import Protocol

from repair_agent.schemas import SectionEmbedding, ServiceManual


class SectionStore(Protocol):
    """Minimal document-store contract for manual-section retrieval."""

    def section_embeddings(self) -> list[SectionEmbedding]:
        """Return every indexed section, in stable corpus order."""

    def service_manuals(self) -> list[ServiceManual]:
        """Return raw manuals for keyword fallback search."""


class InMemorySectionStore:
    """Deterministic section store used for tests and local runs."""

    def __init__(
        self,
        manuals: list[ServiceManual] | None = None,
        embeddings: list[SectionEmbedding] | None = None,
    ) -> None:
        self._manuals = list(manuals or [])
        self._embeddings = list(embeddings or [])

    def upsert(self, embeddings: list[SectionEmbedding]) -> None:
        positions = {
            (record.manual_id, record.section_id): idx
            for idx, record in enumerate(self._embeddings)
        }
        for record in embeddings:
            key = (record.manual_id, record.section_id)
            if key in positions:
                self._embeddings[positions[key]] = record
            else:
                positions[key] = len(self._embeddings)
                self._embeddings.append(record)

    def section_embeddings(self) -> list[SectionEmbedding]:
        return list(self._embeddings)

    def service_manuals(self) -> list[ServiceManual]:
        return list(self._manuals)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between `a` and `b`; 0.0 for empty or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    # Clamp float drift so identical directions never exceed 1.0.
    return max(-1.0, min(1.0, numerator / (norm_a * norm_b)))
