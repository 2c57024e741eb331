"""Data models for the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TranscriptItem:
    """A single transcript turn."""

    timecode: float  # seconds from start
    speaker: str
    text: str


@dataclass
class ChunkOptions:
    """Options controlling :func:`src.ingestion.chunking.chunk_transcript`."""

    chunk_size: int | None = None
    dry_run: bool = False
    model: str | None = None


@dataclass(frozen=True)
class ChunkMetadata:
    start_time: float
    end_time: float
    speakers: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Chunk:
    """A contiguous, topic-labelled span of transcript turns (inclusive indices)."""

    topic: str
    start_idx: int
    end_idx: int
    content: str
    metadata: ChunkMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "startIdx": self.start_idx,
            "endIdx": self.end_idx,
            "content": self.content,
            "metadata": {
                "startTime": self.metadata.start_time,
                "endTime": self.metadata.end_time,
                "speakers": list(self.metadata.speakers),
            },
        }
