"""Configuration models for the repair agent."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetrievalConfig(BaseModel):
    """Configures manual-section vector search."""

    similarity_threshold: float = Field(default=0.3, ge=-1.0, le=1.0)
    top_k: int = Field(default=5, ge=1)
    traced_scores: int = Field(default=8, ge=0)


class CatalogConfig(BaseModel):
    """Configures catalog lookups and quoted manual text."""

    history_limit: int = Field(default=10, ge=1)
    quote_chars: int = Field(default=280, ge=40)


class AgentConfig(BaseModel):
    """Configures orchestration retries and response shaping."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_initial_seconds: float = Field(default=15.0, ge=0.0)
    backoff_max_seconds: float = Field(default=60.0, ge=0.0)
    max_alternatives: int = Field(default=3, ge=0)
