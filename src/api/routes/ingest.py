"""Write endpoints: store content in a workspace and preview transcript chunking."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from anthropic import Anthropic
from fastapi import APIRouter, Depends, HTTPException

from src.api.dependencies import get_llm_client, get_vector_store
from src.api.models import ChunkBody, ChunkResponse, WriteBody, WriteResponse
from src.errors import ParsingError, VectorStoreError
from src.ingestion.chunking import chunk_transcript
from src.ingestion.models import ChunkOptions, TranscriptItem
from src.ingestion.pipeline import write_content
from src.ingestion.storage import VectorStore

logger = logging.getLogger(__name__)

router = APIRouter()

# 10 MB of text per request
MAX_CONTENT_CHARS = 10 * 1024 * 1024


@router.post("/api/workspaces/{workspace_id}/rag/documents", response_model=WriteResponse)
async def write_documents(
    workspace_id: str,
    body: WriteBody,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    llm_client: Annotated[Anthropic, Depends(get_llm_client)],
) -> WriteResponse:
    """Parse, chunk, embed and store content in the workspace namespace.

    Re-sending identical content replaces the documents written for it
    previously.
    """
    if len(body.content) > MAX_CONTENT_CHARS:
        raise HTTPException(
            status_code=413,
            detail=f"Content too large. Maximum is {MAX_CONTENT_CHARS // (1024 * 1024)} MB.",
        )

    options = ChunkOptions(chunk_size=body.chunk_size, dry_run=body.dry_run)
    try:
        result = await asyncio.to_thread(
            write_content,
            body.content,
            body.content_type,
            body.source,
            workspace_id,
            store,
            topics=body.topics,
            extra_metadata=body.metadata,
            chunk_options=options,
            transcript_format=body.transcript_format,
            llm_client=llm_client,
        )
    except ParsingError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except VectorStoreError as exc:
        logger.error("Write to namespace %s failed: %s", workspace_id, exc.message)
        return WriteResponse(
            success=False, documents_written=0, namespace=workspace_id, errors=[exc.message]
        )

    return WriteResponse(
        success=result.success,
        documents_written=result.documents_written,
        namespace=result.namespace,
        errors=result.errors,
    )


@router.post("/api/rag/chunk", response_model=ChunkResponse)
async def preview_chunks(
    body: ChunkBody,
    llm_client: Annotated[Anthropic, Depends(get_llm_client)],
) -> ChunkResponse:
    """Chunk transcript items without embedding or storing anything."""
    items = [TranscriptItem(i.timecode, i.speaker, i.text) for i in body.items]
    options = ChunkOptions(chunk_size=body.chunk_size, dry_run=body.dry_run)
    chunks = await asyncio.to_thread(
        chunk_transcript, items, body.topics, options, llm_client
    )
    return ChunkResponse(chunks=[c.to_dict() for c in chunks], count=len(chunks))
