import pytest

from repair_agent.ingest.embedder import Embedder, HashingEmbedder
from repair_agent.ingest.sections import SectionIndexer, build_embedding_text
from repair_agent.retrieval.vector_store import InMemorySectionStore
from repair_agent.schemas import ServiceManual


class _ShortEmbedder(Embedder):
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [[1.0]]

    def embed_query(self, text: str) -> list[float]:
        return [1.0]


def test_embedding_text_carries_manual_context_and_specs(manuals: list[ServiceManual]) -> None:
    manual = manuals[0]

    text = build_embedding_text(manual, manual.sections[0])

    assert text.startswith("[Drager Evita V500]\n[Section: Fan Module Replacement]")
    assert "[Specifications: Fan speed: 3200 rpm (±5%)]" in text
    assert "[Warnings: Disconnect mains power before opening the housing.]" in text
    assert "[Steps: Remove the rear cover. Unplug the fan connector.]" in text


def test_plain_section_has_no_optional_blocks(manuals: list[ServiceManual]) -> None:
    manual = manuals[0]

    text = build_embedding_text(manual, manual.sections[1])

    assert "[Specifications" not in text
    assert "[Warnings" not in text


def test_index_produces_one_record_per_section(manuals: list[ServiceManual]) -> None:
    records = SectionIndexer(HashingEmbedder(dimension=64)).index(manuals)

    assert [(r.manual_id, r.section_id) for r in records] == [
        ("manual_evita_v500", "ev500_3_7"),
        ("manual_evita_v500", "ev500_2_1"),
        ("manual_mx800", "mx800_5_2"),
    ]
    assert all(len(r.embedding) == 64 for r in records)
    assert records[0].manufacturer == "Drager"


def test_index_rejects_mismatched_vector_count(manuals: list[ServiceManual]) -> None:
    with pytest.raises(ValueError):
        SectionIndexer(_ShortEmbedder()).index(manuals)


def test_upsert_replaces_existing_sections(manuals: list[ServiceManual]) -> None:
    indexer = SectionIndexer(HashingEmbedder())
    store = InMemorySectionStore(manuals=manuals)
    store.upsert(indexer.index(manuals))
    store.upsert(indexer.index(manuals[:1]))

    assert len(store.section_embeddings()) == 3
