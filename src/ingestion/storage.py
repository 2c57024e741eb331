"""Supabase (pgvector) storage for namespaced RAG documents.

Rows live in ``settings.rag_table``::

    id text primary key, namespace text, content text,
    metadata jsonb, embedding vector(1536)

Similarity search goes through the ``settings.match_function`` RPC, which
takes ``query_embedding``, ``match_count``, ``filter_namespace`` and a
``filter`` jsonb using ``$eq`` / ``$in`` / ``$gte`` / ``$lte`` operators over
metadata keys, and returns ``id, content, metadata, similarity``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, cast

import httpx
from supabase import Client, ClientOptions, create_client
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import settings
from src.errors import VectorStoreError
from src.retrieval.models import QueryMatch, RAGDocument, RAGMetadata

logger = logging.getLogger(__name__)

MetadataFilter = dict[str, Any]


class VectorStore(Protocol):
    """Write/query contract consumed by the RAG pipeline.

    Every call is scoped to exactly one namespace. An empty *vector* in
    :meth:`query` means a metadata-only lookup.
    """

    def upsert(self, documents: list[RAGDocument], namespace: str) -> int: ...

    def query(
        self,
        vector: list[float],
        *,
        namespace: str,
        top_k: int,
        filter: MetadataFilter | None = None,
    ) -> list[QueryMatch]: ...

    def list_ids(self, filter: MetadataFilter, namespace: str) -> list[str]: ...

    def delete_ids(self, ids: list[str], namespace: str) -> None: ...

    def delete_by_filter(self, filter: MetadataFilter, namespace: str) -> None: ...

    def delete_namespace(self, namespace: str) -> None: ...


def get_supabase_client() -> Client:
    """Create and return a Supabase client with a bounded request timeout."""
    return create_client(
        settings.supabase_url,
        settings.supabase_key,
        options=ClientOptions(postgrest_client_timeout=settings.request_timeout_seconds),
    )


@retry(
    reraise=True,
    stop=stop_after_attempt(settings.retry_attempts),
    wait=wait_exponential(multiplier=0.5, max=settings.retry_max_wait_seconds),
    retry=retry_if_exception_type(httpx.TransportError),
)
def _execute(request: Any) -> Any:
    """Execute a PostgREST request, retrying transient transport failures."""
    return request.execute()


def row_to_match(row: dict[str, Any]) -> QueryMatch:
    """Convert a raw Supabase row into a :class:`QueryMatch`."""
    metadata = row.get("metadata") or {}
    score = row.get("similarity", row.get("score"))
    return QueryMatch(
        id=str(row["id"]),
        score=float(score or 0.0),
        content=row.get("content") or metadata.get("content") or "",
        metadata=RAGMetadata.from_dict(metadata),
    )


class SupabaseVectorStore:
    """Supabase/pgvector implementation of :class:`VectorStore`."""

    def __init__(
        self,
        client: Client | None = None,
        table: str | None = None,
        match_function: str | None = None,
    ) -> None:
        self._client = client or get_supabase_client()
        self.table = table or settings.rag_table
        self.match_function = match_function or settings.match_function

    def upsert(self, documents: list[RAGDocument], namespace: str) -> int:
        """Insert or replace *documents* in *namespace*. Returns count written."""
        if not documents:
            return 0

        rows: list[dict[str, object]] = [
            {
                "id": doc.id,
                "namespace": namespace,
                "content": doc.content,
                "metadata": doc.metadata.to_dict(),
                "embedding": doc.embedding,
            }
            for doc in documents
        ]
        try:
            _execute(self._client.table(self.table).upsert(rows))
        except Exception as exc:
            raise VectorStoreError(f"Failed to write documents: {exc}") from exc

        logger.debug("Upserted %d documents into namespace %s", len(rows), namespace)
        return len(rows)

    def query(
        self,
        vector: list[float],
        *,
        namespace: str,
        top_k: int,
        filter: MetadataFilter | None = None,
    ) -> list[QueryMatch]:
        """Similarity search, or a metadata-only lookup when *vector* is empty."""
        if not vector:
            return self._filter_only(namespace=namespace, top_k=top_k, filter=filter or {})

        try:
            result = _execute(
                self._client.rpc(
                    self.match_function,
                    {
                        "query_embedding": vector,
                        "match_count": top_k,
                        "filter_namespace": namespace,
                        "filter": filter or {},
                    },
                )
            )
        except Exception as exc:
            raise VectorStoreError(f"Query failed: {exc}") from exc

        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        rows = cast(list[dict[str, Any]], result.data or [])
        return [row_to_match(row) for row in rows]

    def _filter_only(
        self, *, namespace: str, top_k: int, filter: MetadataFilter
    ) -> list[QueryMatch]:
        request = (
            self._client.table(self.table)
            .select("id,content,metadata")
            .eq("namespace", namespace)
        )
        request = apply_metadata_filter(request, filter)
        try:
            result = _execute(request.limit(top_k))
        except Exception as exc:
            raise VectorStoreError(f"Metadata query failed: {exc}") from exc

        rows = cast(list[dict[str, Any]], result.data or [])
        return [row_to_match({**row, "similarity": 0.0}) for row in rows]

    def list_ids(self, filter: MetadataFilter, namespace: str) -> list[str]:
        """Ids of every document in *namespace* whose metadata matches *filter*."""
        request = self._client.table(self.table).select("id").eq("namespace", namespace)
        request = apply_metadata_filter(request, filter)
        try:
            result = _execute(request)
        except Exception as exc:
            raise VectorStoreError(f"Listing document ids failed: {exc}") from exc

        rows = cast(list[dict[str, Any]], result.data or [])
        return [str(row["id"]) for row in rows]

    def delete_ids(self, ids: list[str], namespace: str) -> None:
        if not ids:
            return
        try:
            _execute(
                self._client.table(self.table)
                .delete()
                .eq("namespace", namespace)
                .in_("id", ids)
            )
        except Exception as exc:
            raise VectorStoreError(f"Delete by id failed: {exc}") from exc

    def delete_by_filter(self, filter: MetadataFilter, namespace: str) -> None:
        """Delete documents in *namespace* whose metadata matches *filter*."""
        request = self._client.table(self.table).delete().eq("namespace", namespace)
        request = apply_metadata_filter(request, filter)
        try:
            _execute(request)
        except Exception as exc:
            raise VectorStoreError(f"Delete by metadata failed: {exc}") from exc

    def delete_namespace(self, namespace: str) -> None:
        try:
            _execute(self._client.table(self.table).delete().eq("namespace", namespace))
        except Exception as exc:
            raise VectorStoreError(f"Failed to delete namespace {namespace}: {exc}") from exc


def apply_metadata_filter(request: Any, filter: MetadataFilter) -> Any:
    """Apply a filter expression to a PostgREST builder over ``metadata->>key``.

    Only scalar operators are supported here; array-valued fields (speakers)
    are handled by the match RPC.
    """
    for key, condition in filter.items():
        column = f"metadata->>{key}"
        if not isinstance(condition, dict):
            request = request.eq(column, str(condition))
            continue
        for op, value in condition.items():
            if op == "$eq":
                request = request.eq(column, str(value))
            elif op == "$in":
                request = request.in_(column, [str(v) for v in value])
            elif op == "$gte":
                request = request.gte(column, str(value))
            elif op == "$lte":
                request = request.lte(column, str(value))
            else:
                raise VectorStoreError(f"Unsupported metadata filter operator {op!r} on {key!r}")
    return request
