"""Retrieval components."""

from .service import ChromaRetriever, RetrievalConfig, RetrievalError, Retriever

__all__ = ["ChromaRetriever", "RetrievalConfig", "RetrievalError", "Retriever"]
