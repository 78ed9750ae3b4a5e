"""Repair intelligence agent package."""

from .config import AgentConfig, CatalogConfig, RetrievalConfig

__all__ = ["AgentConfig", "CatalogConfig", "RetrievalConfig"]
