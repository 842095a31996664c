"""Retrieval components."""

from .service import RetrievalClient, RetrievalConfig, Retriever

__all__ = ["RetrievalClient", "RetrievalConfig", "Retriever"]
