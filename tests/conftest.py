"""Shared fixtures: mock transcripts, an in-memory vector store, a fake Claude client."""

from __future__ import annotations

import math
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from src.ingestion.models import TranscriptItem
from src.pipeline_config import DocumentType
from src.retrieval.models import QueryMatch, RAGDocument, RAGMetadata

MOCK_SPEAKERS = ["Alice", "Bob", "Carol"]
MOCK_LINES = [
    "Let's start with planning for next quarter.",
    "We should lock the roadmap by Friday.",
    "The budget for marketing went over by fifteen percent.",
    "Can we move some budget from travel?",
    "On the technical side the migration is nearly done.",
    "The database cutover is scheduled for Tuesday.",
]


def create_mock_transcript(n: int) -> list[TranscriptItem]:
    """*n* turns rotating through three speakers, ten seconds apart."""
    return [
        TranscriptItem(
            timecode=float(i * 10),
            speaker=MOCK_SPEAKERS[i % len(MOCK_SPEAKERS)],
            text=MOCK_LINES[i % len(MOCK_LINES)],
        )
        for i in range(n)
    ]


def make_match(
    id: str,
    score: float = 0.5,
    content: str | None = None,
    **metadata: Any,
) -> QueryMatch:
    metadata.setdefault("source", "meeting.vtt")
    metadata.setdefault("type", DocumentType.TRANSCRIPT)
    metadata.setdefault("created_at", "2024-03-01T10:00:00+00:00")
    return QueryMatch(
        id=id,
        score=score,
        content=content if content is not None else f"content of {id}",
        metadata=RAGMetadata(**metadata),
    )


def make_tool_response(tool_name: str, payload: dict[str, Any]) -> MagicMock:
    """A Claude messages.create response holding one tool_use block."""
    block = MagicMock()
    block.type = "tool_use"
    block.name = tool_name
    block.input = payload
    response = MagicMock()
    response.content = [block]
    return response


def fake_llm_client(tool_name: str, payload: dict[str, Any]) -> MagicMock:
    client = MagicMock()
    client.messages.create.return_value = make_tool_response(tool_name, payload)
    return client


def _matches_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        return value == condition
    for op, expected in condition.items():
        if op == "$eq" and value != expected:
            return False
        if op == "$in":
            values = value if isinstance(value, list) else [value]
            if not any(v in expected for v in values):
                return False
        if op == "$gte" and (value is None or str(value) < str(expected)):
            return False
        if op == "$lte" and (value is None or str(value) > str(expected)):
            return False
    return True


class InMemoryVectorStore:
    """VectorStore backed by a dict, scoring by cosine similarity."""

    def __init__(self) -> None:
        self.namespaces: dict[str, dict[str, RAGDocument]] = {}
        self.query_calls: list[dict[str, Any]] = []
        self.deleted_filters: list[tuple[dict[str, Any], str]] = []
        self.deleted_ids: list[tuple[list[str], str]] = []

    def upsert(self, documents: list[RAGDocument], namespace: str) -> int:
        bucket = self.namespaces.setdefault(namespace, {})
        for doc in documents:
            bucket[doc.id] = doc
        return len(documents)

    def query(
        self,
        vector: list[float],
        *,
        namespace: str,
        top_k: int,
        filter: dict[str, Any] | None = None,
    ) -> list[QueryMatch]:
        self.query_calls.append(
            {"vector": vector, "namespace": namespace, "top_k": top_k, "filter": filter}
        )
        matches = [
            QueryMatch(
                id=doc.id,
                score=_cosine(vector, doc.embedding) if vector else 0.0,
                content=doc.content,
                metadata=doc.metadata,
            )
            for doc in self.namespaces.get(namespace, {}).values()
            if self._matches(doc, filter or {})
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def delete_by_filter(self, filter: dict[str, Any], namespace: str) -> None:
        self.deleted_filters.append((filter, namespace))
        bucket = self.namespaces.get(namespace, {})
        for doc_id in [d.id for d in bucket.values() if self._matches(d, filter)]:
            del bucket[doc_id]

    def list_ids(self, filter: dict[str, Any], namespace: str) -> list[str]:
        bucket = self.namespaces.get(namespace, {})
        return [d.id for d in bucket.values() if self._matches(d, filter)]

    def delete_ids(self, ids: list[str], namespace: str) -> None:
        self.deleted_ids.append((list(ids), namespace))
        bucket = self.namespaces.get(namespace, {})
        for doc_id in ids:
            bucket.pop(doc_id, None)

    def delete_namespace(self, namespace: str) -> None:
        self.namespaces.pop(namespace, None)

    @staticmethod
    def _matches(doc: RAGDocument, filter: dict[str, Any]) -> bool:
        data = doc.metadata.to_dict()
        return all(_matches_condition(data.get(key), cond) for key, cond in filter.items())


def _cosine(a: list[float], b: list[float] | None) -> float:
    if not b:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=False))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def keyword_embedder(texts: list[str]) -> list[list[float]]:
    """Deterministic 3-d embedding: counts of planning / budget / technical words."""
    vocab = (("plan", "roadmap"), ("budget", "cost"), ("migration", "database"))
    vectors = []
    for text in texts:
        lowered = text.lower()
        vectors.append([float(sum(lowered.count(w) for w in words)) + 0.01 for words in vocab])
    return vectors


@pytest.fixture
def mock_transcript() -> list[TranscriptItem]:
    return create_mock_transcript(10)


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def api_client() -> Iterator[TestClient]:
    """TestClient whose dependency overrides are cleared afterwards."""
    from src.api.main import app

    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
