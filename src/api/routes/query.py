"""Query endpoint: namespaced retrieval with reranking and citation formatting."""

from __future__ import annotations

import asyncio
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from src.api.dependencies import get_query_engine
from src.api.models import RAGQueryBody
from src.retrieval.engine import RAGQueryEngine

router = APIRouter()


@router.post("/api/workspaces/{workspace_id}/rag/query")
async def query_workspace(
    workspace_id: str,
    body: RAGQueryBody,
    engine: Annotated[RAGQueryEngine, Depends(get_query_engine)],
) -> dict[str, Any]:
    """Search one workspace's documents and return cited, formatted context.

    Pipeline failures come back as ``{"success": false, "error", "query"}``
    with status 200; only malformed bodies are rejected with 422.
    """
    return await asyncio.to_thread(engine.query, body.to_request(), workspace_id)
