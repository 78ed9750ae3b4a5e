"""Manual-section retriever with metadata pre-filtering and keyword fallback."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

from repair_agent.config import RetrievalConfig
from repair_agent.ingest.embedder import Embedder
from repair_agent.retrieval.vector_store import cosine_similarity
from repair_agent.schemas import ManualSection, SectionEmbedding, ServiceManual
from repair_agent.types import RetrievalTrace, ScoredSection, ScoreEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class MetadataFilter:
    """Narrowing applied before scoring.

    `manufacturer` is an exact, case-insensitive match and `equipment_name`
    a case-insensitive substring match.
    """

    manufacturer: str | None = None
    equipment_name: str | None = None

    def matches(self, manufacturer: str, equipment_names: Sequence[str]) -> bool:
        if self.manufacturer and manufacturer.lower() != self.manufacturer.lower():
            return False
        if self.equipment_name:
            term = self.equipment_name.lower()
            if not any(term in name.lower() for name in equipment_names):
                return False
        return True


def rank_by_threshold(
    scored: Sequence[tuple[T, float]], threshold: float, top_k: int
) -> list[tuple[T, float]]:
    """Sort by score descending, keep scores >= threshold, truncate to top_k.

    `sorted` is stable, so equal scores keep their corpus order.
    """
    ranked = sorted(scored, key=lambda item: item[1], reverse=True)
    return [item for item in ranked if item[1] >= threshold][:top_k]


class SectionRetriever:
    """Scores indexed manual sections against a query vector.

    Vector mode requires a non-empty corpus and query. Otherwise, or when the
    metadata filter leaves nothing to score, the retriever falls back to
    substring matching over raw manual text and says so in the trace.
    """

    def __init__(
        self,
        embedder: Embedder,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def search(
        self,
        query_text: str,
        metadata_filter: MetadataFilter | None,
        corpus: Sequence[SectionEmbedding],
        *,
        manuals: Sequence[ServiceManual] = (),
        keyword: str | None = None,
    ) -> tuple[list[ScoredSection], RetrievalTrace]:
        metadata_filter = metadata_filter or MetadataFilter()
        query_text = query_text.strip()

        if not corpus:
            return self._keyword_search(
                keyword, metadata_filter, corpus, manuals, reason="section corpus is empty"
            )
        if not query_text:
            return self._keyword_search(
                keyword, metadata_filter, corpus, manuals, reason="query text is empty"
            )

        candidates = [
            record
            for record in corpus
            if metadata_filter.matches(record.manufacturer, [record.equipment_name])
        ]
        if not candidates:
            return self._keyword_search(
                keyword,
                metadata_filter,
                corpus,
                manuals,
                reason="no sections matched the metadata filter",
            )

        query_vector = self.embedder.embed_query(query_text)
        scored = [(record, cosine_similarity(query_vector, record.embedding)) for record in candidates]
        top = rank_by_threshold(scored, self.config.similarity_threshold, self.config.top_k)
        ranked_all = sorted(scored, key=lambda item: item[1], reverse=True)
        above_count = sum(1 for _, score in scored if score >= self.config.similarity_threshold)

        trace = RetrievalTrace(
            mode="vector",
            corpus_size=len(corpus),
            candidates_after_metadata_filter=len(candidates),
            query_text=query_text,
            top_scores=tuple(
                ScoreEntry(label=record.section_title, score=round(score, 4))
                for record, score in ranked_all[: self.config.traced_scores]
            ),
            threshold=self.config.similarity_threshold,
            count_above_threshold=above_count,
            top_k=self.config.top_k,
        )
        logger.info(
            "Vector search: %d/%d candidates, %d above %.2f",
            len(candidates),
            len(corpus),
            above_count,
            self.config.similarity_threshold,
        )
        return [_from_embedding(record, score) for record, score in top], trace

    def _keyword_search(
        self,
        keyword: str | None,
        metadata_filter: MetadataFilter,
        corpus: Sequence[SectionEmbedding],
        manuals: Sequence[ServiceManual],
        *,
        reason: str,
    ) -> tuple[list[ScoredSection], RetrievalTrace]:
        logger.warning("Using keyword fallback search: %s", reason)
        term = (keyword or "").strip().lower()
        filtered = [
            manual
            for manual in manuals
            if metadata_filter.matches(
                manual.manufacturer, [manual.equipment_name, *manual.compatible_models]
            )
        ]

        considered = 0
        results: list[ScoredSection] = []
        for manual in filtered:
            for section in manual.sections:
                considered += 1
                if not term or _section_contains(section, term):
                    results.append(_from_manual_section(manual, section))

        trace = RetrievalTrace(
            mode="keyword",
            corpus_size=len(corpus),
            candidates_after_metadata_filter=considered,
            query_text=keyword or "",
            top_scores=(),
            threshold=self.config.similarity_threshold,
            count_above_threshold=0,
            top_k=self.config.top_k,
            reason=reason,
        )
        return results[: self.config.top_k], trace


def _section_contains(section: ManualSection, term: str) -> bool:
    if term in section.title.lower() or term in section.content.lower():
        return True
    if any(term in step.lower() for step in section.steps):
        return True
    if any(term in warning.lower() for warning in section.warnings):
        return True
    return any(
        term in spec.parameter.lower() or term in spec.value.lower()
        for spec in section.specifications
    )


def _from_embedding(record: SectionEmbedding, score: float) -> ScoredSection:
    return ScoredSection(
        manual_id=record.manual_id,
        manual_title=record.manual_title,
        section_id=record.section_id,
        section_title=record.section_title,
        content=record.content,
        score=score,
        specifications=list(record.specifications),
        warnings=list(record.warnings),
        steps=list(record.steps),
        tools=list(record.tools),
    )


def _from_manual_section(manual: ServiceManual, section: ManualSection) -> ScoredSection:
    return ScoredSection(
        manual_id=manual.manual_id,
        manual_title=manual.title,
        section_id=section.section_id,
        section_title=section.title,
        content=section.content,
        score=0.0,
        specifications=list(section.specifications),
        warnings=list(section.warnings),
        steps=list(section.steps),
        tools=list(section.tools),
    )
