"""Error taxonomy for the RAG subsystem."""

from __future__ import annotations

from typing import Any


class RAGError(Exception):
    """Base class for all RAG errors."""

    code = "RAG_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ChunkingError(RAGError):
    """AI-assisted chunking failed (model call or response parsing)."""

    code = "CHUNKING_ERROR"


class RerankError(RAGError):
    """A rerank strategy failed."""

    code = "RERANK_ERROR"


class VectorStoreError(RAGError):
    """A query or write against the vector backend failed."""

    code = "VECTOR_STORE_ERROR"


class ValidationError(RAGError):
    """Malformed filter or date input."""

    code = "VALIDATION_ERROR"


class ParsingError(RAGError):
    """Transcript or document content could not be parsed."""

    code = "PARSING_ERROR"
