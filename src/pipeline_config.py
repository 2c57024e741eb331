"""Pipeline configuration: strategy enums and PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from src.config import settings


class RerankMethod(str, Enum):
    """Reranking strategy requested by the caller or reported as executed."""

    LLM = "llm"
    VOYAGE = "voyage"
    NONE = "none"


class ContentType(str, Enum):
    """Content-type filter accepted by the query endpoint."""

    TRANSCRIPT = "transcript"
    DOCUMENT = "document"
    CHAT = "chat"
    ALL = "all"


class DocumentType(str, Enum):
    """Kind of content stored in a RAG document."""

    TRANSCRIPT = "transcript"
    DOCUMENT = "document"
    CHAT = "chat"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable configuration for the query pipeline.

    Defaults mirror the deployed behaviour: LLM reranking with cross-encoder
    fallback, 3x over-fetch, no score pre-filter, no context expansion.
    """

    top_k: int = field(default_factory=lambda: settings.default_top_k)
    over_fetch_factor: int = field(default_factory=lambda: settings.over_fetch_factor)
    min_score: float = field(default_factory=lambda: settings.min_score)
    rerank_method: RerankMethod = RerankMethod.LLM
    expand_context: bool = False

    def fetch_size(self, top_k: int | None = None) -> int:
        """Number of candidates to request from the vector store."""
        return (top_k or self.top_k) * self.over_fetch_factor
