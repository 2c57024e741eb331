"""Write path: parse -> chunk -> build documents -> embed -> upsert."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from src.errors import VectorStoreError
from src.ingestion.chunking import chunk_transcript
from src.ingestion.embeddings import embed_texts
from src.ingestion.models import ChunkOptions
from src.ingestion.parsers import parse_document, parse_transcript
from src.ingestion.storage import VectorStore
from src.pipeline_config import DocumentType
from src.retrieval.models import RAGDocument, RAGMetadata, WriteResult, utc_now_iso

if TYPE_CHECKING:
    from anthropic import Anthropic

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def build_documents(
    content: str,
    content_type: DocumentType,
    source: str,
    namespace: str,
    topics: list[str] | None = None,
    extra_metadata: dict[str, Any] | None = None,
    chunk_options: ChunkOptions | None = None,
    transcript_format: str | None = None,
    llm_client: Anthropic | None = None,
) -> list[RAGDocument]:
    """Convert raw content into RAG documents keyed by the content hash.

    - transcripts are topic-chunked (``{hash}-chunk-{i}``)
    - documents are split on markdown headers (``{hash}-section-{i}``)
    - chat content is stored whole (``{hash}-chat``)

    Raises:
        ParsingError: If transcript content cannot be parsed.
    """
    file_hash = content_hash(content)
    created_at = utc_now_iso()
    extra = dict(extra_metadata or {})
    title = extra.pop("title", None)
    meeting_date = extra.pop("meetingDate", None)
    documents: list[RAGDocument] = []

    def metadata(**fields: Any) -> RAGMetadata:
        return RAGMetadata(
            source=source,
            type=content_type,
            created_at=created_at,
            file_hash=file_hash,
            title=title,
            meeting_date=meeting_date,
            extra=dict(extra),
            **fields,
        )

    if content_type is DocumentType.TRANSCRIPT:
        items = parse_transcript(content, transcript_format)
        chunks = chunk_transcript(items, topics or [], chunk_options, client=llm_client)
        for i, chunk in enumerate(chunks):
            documents.append(
                RAGDocument(
                    id=f"{file_hash}-chunk-{i}",
                    content=chunk.content,
                    namespace=namespace,
                    metadata=metadata(
                        topic=chunk.topic,
                        speakers=list(chunk.metadata.speakers),
                        start_time=chunk.metadata.start_time,
                        end_time=chunk.metadata.end_time,
                        chunk_index=i,
                        total_chunks=len(chunks),
                    ),
                )
            )
    elif content_type is DocumentType.DOCUMENT:
        sections = parse_document(content)
        for i, section in enumerate(sections):
            documents.append(
                RAGDocument(
                    id=f"{file_hash}-section-{i}",
                    content=section.text,
                    namespace=namespace,
                    metadata=metadata(
                        section_title=section.text.splitlines()[0].strip(),
                        chunk_index=i,
                        total_chunks=len(sections),
                    ),
                )
            )
    elif content.strip():
        documents.append(
            RAGDocument(
                id=f"{file_hash}-chat",
                content=content,
                namespace=namespace,
                metadata=metadata(),
            )
        )

    return documents


def write_documents(
    documents: list[RAGDocument],
    store: VectorStore,
    namespace: str,
    embedder: Callable[[list[str]], list[list[float]]] | None = None,
    batch_size: int = MAX_BATCH_SIZE,
) -> WriteResult:
    """Embed and upsert *documents* in batches.

    A failing batch is recorded in ``errors`` and the remaining batches are
    still attempted.
    """
    embedder = embedder or embed_texts
    written = 0
    errors: list[str] = []

    for start in range(0, len(documents), batch_size):
        batch = documents[start : start + batch_size]
        batch_no = start // batch_size + 1
        try:
            vectors = embedder([doc.content for doc in batch])
            for doc, vector in zip(batch, vectors, strict=True):
                doc.embedding = vector
            written += store.upsert(batch, namespace)
        except Exception as exc:
            logger.exception("Batch %d failed for namespace %s", batch_no, namespace)
            errors.append(f"Batch {batch_no}: {exc}")

    return WriteResult(
        success=not errors,
        documents_written=written,
        namespace=namespace,
        errors=errors,
    )


def write_content(
    content: str,
    content_type: DocumentType,
    source: str,
    namespace: str,
    store: VectorStore,
    topics: list[str] | None = None,
    extra_metadata: dict[str, Any] | None = None,
    chunk_options: ChunkOptions | None = None,
    transcript_format: str | None = None,
    embedder: Callable[[list[str]], list[list[float]]] | None = None,
    llm_client: Anthropic | None = None,
) -> WriteResult:
    """Full write pipeline for one piece of content into one namespace.

    Documents previously written for the same content hash are replaced: the
    new documents are upserted first and leftover ids for that hash are only
    pruned once every batch succeeded, so a failed rewrite keeps the old copy.

    Raises:
        ParsingError: If the content cannot be parsed.
        VectorStoreError: If stale documents cannot be removed.
    """
    if not namespace:
        raise VectorStoreError("A namespace is required for every write")

    documents = build_documents(
        content,
        content_type,
        source,
        namespace,
        topics=topics,
        extra_metadata=extra_metadata,
        chunk_options=chunk_options,
        transcript_format=transcript_format,
        llm_client=llm_client,
    )
    if not documents:
        return WriteResult(
            success=False,
            documents_written=0,
            namespace=namespace,
            errors=["No content to store after processing"],
        )

    result = write_documents(documents, store, namespace, embedder=embedder)
    if result.success:
        prune_stale(store, documents, namespace)
    logger.info(
        "Wrote %d/%d %s documents to namespace %s",
        result.documents_written,
        len(documents),
        content_type.value,
        namespace,
    )
    return result


def prune_stale(store: VectorStore, documents: list[RAGDocument], namespace: str) -> list[str]:
    """Delete ids stored for the documents' file hash that were not just written."""
    current = {doc.id for doc in documents}
    existing = store.list_ids({"fileHash": documents[0].metadata.file_hash}, namespace)
    stale = sorted(doc_id for doc_id in existing if doc_id not in current)
    if stale:
        store.delete_ids(stale, namespace)
        logger.info("Removed %d stale documents from namespace %s", len(stale), namespace)
    return stale
