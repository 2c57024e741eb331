"""Lazily-built collaborators shared by the API routes.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from anthropic import Anthropic

from src.ingestion.storage import SupabaseVectorStore, VectorStore
from src.llm import get_anthropic_client
from src.retrieval.cache import ResultCache
from src.retrieval.engine import RAGQueryEngine
from src.retrieval.reranker import LLMReranker
from src.retrieval.search import VectorQueryClient


@lru_cache(maxsize=1)
def get_vector_store() -> VectorStore:
    return SupabaseVectorStore()


@lru_cache(maxsize=1)
def get_llm_client() -> Anthropic:
    return get_anthropic_client()


@lru_cache(maxsize=1)
def get_query_engine() -> RAGQueryEngine:
    """One engine per process so the result cache is shared across requests."""
    return RAGQueryEngine(
        VectorQueryClient(get_vector_store()),
        llm_reranker=LLMReranker(client=get_llm_client()),
        cache=ResultCache(),
    )
