"""Data models shared by the query and write paths."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from src.pipeline_config import ContentType, DocumentType, RerankMethod

# snake_case attribute -> camelCase key stored in the vector backend
_METADATA_KEYS: dict[str, str] = {
    "source": "source",
    "type": "type",
    "topic": "topic",
    "speakers": "speakers",
    "start_time": "startTime",
    "end_time": "endTime",
    "chunk_index": "chunkIndex",
    "total_chunks": "totalChunks",
    "created_at": "createdAt",
    "file_hash": "fileHash",
    "title": "title",
    "document_type": "documentType",
    "meeting_date": "meetingDate",
    "section_title": "sectionTitle",
}


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class RAGMetadata:
    """Metadata stored alongside every RAG document."""

    source: str = ""
    type: DocumentType = DocumentType.DOCUMENT
    created_at: str = field(default_factory=utc_now_iso)
    topic: str | None = None
    speakers: list[str] | None = None
    start_time: float | None = None
    end_time: float | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None
    file_hash: str | None = None
    title: str | None = None
    document_type: str | None = None
    meeting_date: str | None = None
    section_title: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase shape stored in the backend.

        ``documentType`` defaults to ``type`` and ``meetingDate`` to
        ``createdAt`` so that content-type and date filters always have a
        field to match against.
        """
        data: dict[str, Any] = dict(self.extra)
        for attr, key in _METADATA_KEYS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, DocumentType):
                value = value.value
            data[key] = list(value) if isinstance(value, list) else value
        data.setdefault("documentType", self.type.value)
        data.setdefault("meetingDate", self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RAGMetadata:
        data = dict(data or {})
        kwargs: dict[str, Any] = {}
        for attr, key in _METADATA_KEYS.items():
            if key in data:
                kwargs[attr] = data.pop(key)
        data.pop("content", None)

        raw_type = kwargs.get("type") or DocumentType.DOCUMENT.value
        try:
            kwargs["type"] = DocumentType(raw_type)
        except ValueError:
            kwargs["type"] = DocumentType.DOCUMENT
        if not kwargs.get("created_at"):
            kwargs["created_at"] = utc_now_iso()
        if kwargs.get("source") is None:
            kwargs["source"] = ""
        if kwargs.get("speakers") is not None:
            kwargs["speakers"] = [str(s) for s in kwargs["speakers"]]
        for int_attr in ("chunk_index", "total_chunks"):
            if kwargs.get(int_attr) is not None:
                kwargs[int_attr] = int(kwargs[int_attr])
        return cls(**kwargs, extra=data)


@dataclass
class RAGDocument:
    """A unit of retrievable content scoped to one namespace (workspace)."""

    id: str
    content: str
    metadata: RAGMetadata
    namespace: str
    embedding: list[float] | None = None


@dataclass
class QueryMatch:
    """A candidate returned by the vector store, possibly reranked."""

    id: str
    score: float
    content: str
    metadata: RAGMetadata
    topic_id: str | None = None
    merged_ids: list[str] = field(default_factory=list)

    def with_score(self, score: float) -> QueryMatch:
        return replace(self, score=score)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "score": self.score,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
        }
        if self.topic_id is not None:
            data["topicId"] = self.topic_id
        if self.merged_ids:
            data["mergedIds"] = list(self.merged_ids)
        return data


@dataclass
class QueryResult:
    matches: list[QueryMatch]
    namespace: str


@dataclass
class TopicGroup:
    id: str
    topic: str
    match_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "topic": self.topic, "matchIds": list(self.match_ids)}


@dataclass
class RerankedResult:
    """Output of a rerank strategy, tagged with the method that produced it."""

    matches: list[QueryMatch]
    method: RerankMethod
    topic_groups: list[TopicGroup] | None = None
    formatted_content: str = ""


@dataclass
class DateRange:
    start: str
    end: str


@dataclass
class QueryFilter:
    source: str | None = None
    topics: list[str] | None = None
    speakers: list[str] | None = None
    date_range: DateRange | None = None


@dataclass
class QueryRequest:
    """A complete query request; every field participates in the cache key."""

    query: str
    content_type: ContentType = ContentType.ALL
    filter: QueryFilter | None = None
    rerank_method: RerankMethod | None = None
    top_k: int | None = None
    expand_context: bool = False

    def cache_payload(self) -> dict[str, Any]:
        flt = self.filter or QueryFilter()
        return {
            "query": self.query,
            "contentType": self.content_type.value,
            "source": flt.source,
            "topics": sorted(flt.topics) if flt.topics else None,
            "speakers": sorted(flt.speakers) if flt.speakers else None,
            "dateRange": (
                {"start": flt.date_range.start, "end": flt.date_range.end}
                if flt.date_range
                else None
            ),
            "rerankMethod": self.rerank_method.value if self.rerank_method else None,
            "topK": self.top_k,
            "expandContext": self.expand_context,
        }


@dataclass
class WriteResult:
    success: bool
    documents_written: int
    namespace: str
    errors: list[str] = field(default_factory=list)
