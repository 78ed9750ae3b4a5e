"""FastAPI entrypoint for chat, streaming chat, and metrics endpoints."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import asdict
from pathlib import Path
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from repair_agent.agent.catalog import InMemoryCatalog
from repair_agent.agent.completion import CompletionService, LangChainCompletionService
from repair_agent.agent.fallback import RuleBasedCompletionService
from repair_agent.agent.orchestrator import DiagnosticOrchestrator
from repair_agent.ingest.embedder import HashingEmbedder
from repair_agent.ingest.sections import SectionIndexer
from repair_agent.obs.events import event_to_dict
from repair_agent.obs.metrics import MetricsStore, aggregate_metrics
from repair_agent.retrieval.vector_store import InMemorySectionStore
from repair_agent.schemas import ServiceManual
from repair_agent.types import ConversationTurn

logger = logging.getLogger(__name__)

MAX_TOTAL_CHARS = 50_000


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def load_stores(path: str | None) -> tuple[InMemoryCatalog, InMemorySectionStore]:
    """Load catalog records and service manuals from a JSON file, if given."""
    if not path:
        return InMemoryCatalog(), InMemorySectionStore()

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    catalog = InMemoryCatalog.from_dict(data)
    manuals = [ServiceManual.model_validate(item) for item in data.get("service_manuals", [])]
    sections = InMemorySectionStore(manuals=manuals)
    sections.upsert(SectionIndexer(HashingEmbedder()).index(manuals))
    logger.info(
        "Loaded %d parts, %d manuals from %s", len(catalog.list_parts()), len(manuals), path
    )
    return catalog, sections


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content cannot be blank")
        return value


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_conversation(self) -> "ChatRequest":
        if self.messages[-1].role != "user":
            raise ValueError("the last message must be from the user")
        total = sum(len(message.content) for message in self.messages)
        if total > MAX_TOTAL_CHARS:
            raise ValueError(f"conversation too long: {total} > {MAX_TOTAL_CHARS} characters")
        return self

    def turns(self) -> list[ConversationTurn]:
        return [ConversationTurn(role=message.role, text=message.content) for message in self.messages]


def create_app(
    orchestrator: DiagnosticOrchestrator | None = None,
    *,
    completion_mode: str | None = None,
) -> FastAPI:
    if orchestrator is None:
        catalog, sections = load_stores(os.getenv("REPAIR_AGENT_DATA"))
        llm = _create_llm()
        completion: CompletionService = (
            LangChainCompletionService(llm)
            if llm is not None
            else RuleBasedCompletionService.from_stores(catalog, sections)
        )
        completion_mode = "langchain" if llm is not None else "rule_based"
        orchestrator = DiagnosticOrchestrator.create(
            completion=completion,
            catalog=catalog,
            sections=sections,
            metrics_store=MetricsStore(),
        )

    agent = orchestrator
    store = agent.metrics_store
    app = FastAPI(title="Repair Intelligence Agent", version="0.1.0")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "completion_mode": completion_mode or "custom",
            "request_count": len(store),
        }

    @app.post("/chat")
    async def chat(request: ChatRequest) -> dict[str, Any]:
        result = await agent.respond(request.turns())
        return {**result.response.model_dump(), "_metrics": asdict(result.metrics)}

    @app.post("/chat/stream")
    async def chat_stream(request: ChatRequest) -> StreamingResponse:
        async def _lines() -> AsyncIterator[str]:
            async for event in agent.stream(request.turns()):
                yield json.dumps(event_to_dict(event)) + "\n"

        return StreamingResponse(_lines(), media_type="application/x-ndjson")

    @app.get("/metrics")
    def metrics(limit: int = Query(default=50, ge=1, le=200)) -> dict[str, Any]:
        recent = store.list_recent(limit=limit)
        return {
            "summary": asdict(aggregate_metrics(recent)),
            "recent": [asdict(record) for record in recent],
        }

    @app.get("/metrics/{request_id}")
    def metrics_detail(request_id: str) -> dict[str, Any]:
        try:
            record = store.get(request_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    return app


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
app = create_app()
