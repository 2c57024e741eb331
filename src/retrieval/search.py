"""Namespaced similarity search over the vector store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from openai import APIError

from src.errors import VectorStoreError
from src.ingestion.embeddings import embed_query
from src.ingestion.storage import VectorStore
from src.retrieval.models import QueryMatch, QueryResult

logger = logging.getLogger(__name__)


class VectorQueryClient:
    """Embeds query text and runs namespaced queries against a vector store.

    Scores are clamped to ``[0, 1]`` and matches below ``min_score`` are
    dropped before returning.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Callable[[str], list[float]] = embed_query,
    ) -> None:
        self.store = store
        self.embedder = embedder

    def query(
        self,
        query_text: str,
        *,
        namespace: str,
        top_k: int,
        filter: dict[str, Any] | None = None,
        min_score: float = 0.0,
    ) -> QueryResult:
        """Run a similarity query scoped to *namespace*.

        Raises:
            VectorStoreError: If embedding or the store query fails.
        """
        if not namespace:
            raise VectorStoreError("A namespace is required for every query")

        try:
            vector = self.embedder(query_text)
        except APIError as exc:
            raise VectorStoreError(f"Query embedding failed: {exc}") from exc

        matches = self.store.query(vector, namespace=namespace, top_k=top_k, filter=filter)
        kept = [
            m.with_score(_clamp(m.score)) for m in matches if _clamp(m.score) >= min_score
        ]
        logger.debug(
            "Namespace %s returned %d matches (%d after min_score=%.2f)",
            namespace,
            len(matches),
            len(kept),
            min_score,
        )
        return QueryResult(matches=kept, namespace=namespace)

    def fetch_adjacent(
        self, file_hash: str, chunk_index: int, *, namespace: str
    ) -> list[QueryMatch]:
        """Metadata-only lookup of the chunks either side of *chunk_index*."""
        neighbours = [i for i in (chunk_index - 1, chunk_index + 1) if i >= 0]
        if not neighbours:
            return []
        return self.store.query(
            [],
            namespace=namespace,
            top_k=len(neighbours),
            filter={"fileHash": file_hash, "chunkIndex": {"$in": neighbours}},
        )


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, score))
