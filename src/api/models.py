"""Pydantic request/response schemas for the workspace RAG API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.pipeline_config import ContentType, DocumentType, RerankMethod
from src.retrieval.models import DateRange, QueryFilter, QueryRequest


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DateRangeBody(BaseModel):
    start: str
    end: str


class QueryFilterBody(_CamelModel):
    source: str | None = None
    topics: list[str] | None = None
    speakers: list[str] | None = None
    date_range: DateRangeBody | None = Field(default=None, alias="dateRange")


class RAGQueryBody(_CamelModel):
    """Request body for ``POST /api/workspaces/{workspace_id}/rag/query``."""

    query: str = Field(min_length=1)
    content_type: ContentType = Field(default=ContentType.ALL, alias="contentType")
    filter: QueryFilterBody | None = None
    rerank_method: RerankMethod | None = Field(default=None, alias="rerankMethod")
    top_k: int | None = Field(default=None, ge=1, le=50, alias="topK")
    expand_context: bool = Field(default=False, alias="expandContext")

    def to_request(self) -> QueryRequest:
        flt = None
        if self.filter is not None:
            date_range = self.filter.date_range
            flt = QueryFilter(
                source=self.filter.source,
                topics=self.filter.topics,
                speakers=self.filter.speakers,
                date_range=DateRange(date_range.start, date_range.end) if date_range else None,
            )
        return QueryRequest(
            query=self.query,
            content_type=self.content_type,
            filter=flt,
            rerank_method=self.rerank_method,
            top_k=self.top_k,
            expand_context=self.expand_context,
        )


class WriteBody(_CamelModel):
    """Request body for ``POST /api/workspaces/{workspace_id}/rag/documents``."""

    content: str = Field(min_length=1)
    content_type: DocumentType = Field(alias="contentType")
    source: str
    topics: list[str] = []
    metadata: dict[str, Any] = {}
    transcript_format: str | None = Field(default=None, alias="format")
    chunk_size: int | None = Field(default=None, ge=1, alias="chunkSize")
    dry_run: bool = Field(default=False, alias="dryRun")


class WriteResponse(_CamelModel):
    success: bool
    documents_written: int = Field(alias="documentsWritten")
    namespace: str
    errors: list[str] = []


class TranscriptItemBody(BaseModel):
    timecode: float
    speaker: str = "Unknown"
    text: str


class ChunkBody(_CamelModel):
    """Request body for ``POST /api/rag/chunk``."""

    items: list[TranscriptItemBody]
    topics: list[str] = []
    chunk_size: int | None = Field(default=None, ge=1, alias="chunkSize")
    dry_run: bool = Field(default=False, alias="dryRun")


class ChunkResponse(BaseModel):
    chunks: list[dict[str, Any]]
    count: int
