"""Topic-based chunking of transcript turns.

Two modes:

- **dry run / heuristic**: split on speaker changes and pauses near a target
  size, label chunks from the topic vocabulary without calling a model.
- **AI-assisted**: send the whole transcript to Claude and ask for contiguous
  topic segments, then repair whatever comes back.

Either way the result is contiguous: the first chunk
starts at 0, the last ends at ``len(items) - 1`` and each chunk starts right
after the previous one ends.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from src.config import settings
from src.errors import ChunkingError
from src.ingestion.models import Chunk, ChunkMetadata, ChunkOptions, TranscriptItem
from src.llm import generate_structured

if TYPE_CHECKING:
    from anthropic import Anthropic

logger = logging.getLogger(__name__)

GENERAL_TOPIC = "General Discussion"

# Heuristic boundaries: never cut a chunk shorter than this many turns when
# looking back for a speaker change, and treat longer silences as a boundary.
_MIN_LOOKBACK_TURNS = 3
_PAUSE_BOUNDARY_SECONDS = 30.0

CHUNKING_TOOL_NAME = "store_topic_segments"

CHUNKING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "chunks": {
            "type": "array",
            "description": "Contiguous topic segments covering every turn exactly once.",
            "items": {
                "type": "object",
                "properties": {
                    "topic": {
                        "type": "string",
                        "description": "The topic discussed in this segment.",
                    },
                    "startIdx": {
                        "type": "integer",
                        "description": "Index of the first turn (inclusive).",
                    },
                    "endIdx": {
                        "type": "integer",
                        "description": "Index of the last turn (inclusive).",
                    },
                },
                "required": ["topic", "startIdx", "endIdx"],
            },
        }
    },
    "required": ["chunks"],
}


class _SegmentModel(BaseModel):
    topic: str
    start_idx: int = Field(alias="startIdx", ge=0)
    end_idx: int = Field(alias="endIdx", ge=0)


class _ChunkingResponse(BaseModel):
    chunks: list[_SegmentModel] = Field(min_length=1)


@dataclass
class _Span:
    """Mutable working copy of a segment while repairing model output."""

    topic: str
    start: int
    end: int


def format_transcript_line(item: TranscriptItem) -> str:
    """Render one turn as ``[<timecode>s] <speaker>: <text>``."""
    return f"[{_format_timecode(item.timecode)}s] {item.speaker}: {item.text}"


def _format_timecode(timecode: float) -> str:
    value = float(timecode)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def chunk_transcript(
    items: list[TranscriptItem],
    topics: list[str],
    options: ChunkOptions | None = None,
    client: Anthropic | None = None,
) -> list[Chunk]:
    """Segment transcript turns into topic-labelled contiguous chunks.

    Never raises for model or parsing failures: AI errors degrade to a single
    ``"General Discussion"`` chunk spanning the whole transcript.

    Args:
        items: Ordered transcript turns.
        topics: Topic vocabulary used to label chunks.
        options: Chunk size, dry-run flag and model override.
        client: Anthropic client for AI-assisted mode (created if None).

    Returns:
        Chunks in transcript order; ``[]`` for an empty transcript.
    """
    if not items:
        return []
    if options is None:
        options = ChunkOptions()

    if options.dry_run:
        spans = heuristic_spans(items, topics, options.chunk_size or settings.chunk_size)
    else:
        try:
            spans = _ai_spans(items, topics, options.model, client)
        except ChunkingError:
            logger.exception("AI chunking failed for %d items, using fallback", len(items))
            spans = [_Span(GENERAL_TOPIC, 0, len(items) - 1)]

    return [_build_chunk(span, items) for span in spans]


def heuristic_spans(
    items: list[TranscriptItem], topics: list[str], chunk_size: int
) -> list[_Span]:
    """Split near *chunk_size* turns, preferring speaker changes and long pauses."""
    target = max(1, chunk_size)
    spans: list[_Span] = []
    current = 0
    last = len(items) - 1

    while current <= last:
        end = min(current + target - 1, last)

        if end < last:
            for i in range(end, current + _MIN_LOOKBACK_TURNS, -1):
                if _is_boundary(items[i - 1], items[i]):
                    end = i - 1
                    break

        spans.append(_Span(_pick_topic(items[current : end + 1], topics, len(spans)), current, end))
        current = end + 1

    return spans


def _is_boundary(previous: TranscriptItem, item: TranscriptItem) -> bool:
    return (
        item.speaker != previous.speaker
        or item.timecode - previous.timecode > _PAUSE_BOUNDARY_SECONDS
    )


def _pick_topic(window: list[TranscriptItem], topics: list[str], position: int) -> str:
    """Best keyword match from *topics*, else the next topic in rotation."""
    if not topics:
        return GENERAL_TOPIC

    text = " ".join(item.text for item in window).lower()
    best_topic, best_hits = None, 0
    for topic in topics:
        words = [w for w in re.findall(r"\w+", topic.lower()) if len(w) > 2]
        hits = sum(len(re.findall(rf"\b{re.escape(w)}", text)) for w in words)
        if hits > best_hits:
            best_topic, best_hits = topic, hits

    return best_topic or topics[position % len(topics)]


def _ai_spans(
    items: list[TranscriptItem],
    topics: list[str],
    model: str | None,
    client: Anthropic | None,
) -> list[_Span]:
    try:
        raw = generate_structured(
            build_chunking_prompt(items, topics),
            tool_name=CHUNKING_TOOL_NAME,
            description="Store the contiguous topic segments of the conversation.",
            input_schema=CHUNKING_SCHEMA,
            model=model or settings.llm_model,
            client=client,
            max_tokens=_max_tokens_for(len(items)),
        )
        parsed = _ChunkingResponse.model_validate(raw)
    except SchemaValidationError as exc:
        raise ChunkingError("Chunking response failed schema validation", exc.errors()) from exc
    except Exception as exc:
        raise ChunkingError(f"Chunking model call failed: {exc}") from exc

    spans = [_Span(s.topic.strip() or GENERAL_TOPIC, s.start_idx, s.end_idx) for s in parsed.chunks]
    return repair_spans(spans, len(items))


def _max_tokens_for(item_count: int) -> int:
    # ~1 segment per 5 turns, ~40 tokens per segment, with headroom
    return min(8192, max(1024, math.ceil(item_count / 5) * 40 + 512))


def repair_spans(spans: list[_Span], total_items: int) -> list[_Span]:
    """Force model output into a contiguous, full-coverage span list.

    Gaps are closed by extending the earlier span, overlaps by trimming the
    later one (dropping it if nothing is left). Repeated topic labels are kept
    as separate spans.
    """
    last = total_items - 1
    ordered = sorted(spans, key=lambda s: s.start)
    repaired: list[_Span] = []

    for span in ordered:
        span.start = min(max(span.start, 0), last)
        span.end = min(max(span.end, span.start), last)

        if not repaired:
            if span.start != 0:
                logger.warning("Fixing first chunk start: %d -> 0", span.start)
                span.start = 0
            repaired.append(span)
            continue

        previous = repaired[-1]
        if span.start > previous.end + 1:
            logger.warning(
                "Fixing gap after chunk %d: end %d -> %d",
                len(repaired) - 1,
                previous.end,
                span.start - 1,
            )
            previous.end = span.start - 1
        elif span.start <= previous.end:
            span.start = previous.end + 1
            if span.start > span.end:
                logger.warning("Dropping chunk %r fully overlapped by its predecessor", span.topic)
                continue
        repaired.append(span)

    if repaired[-1].end != last:
        logger.warning("Fixing last chunk end: %d -> %d", repaired[-1].end, last)
        repaired[-1].end = last

    return repaired


def build_chunking_prompt(items: list[TranscriptItem], topics: list[str]) -> str:
    """Prompt asking for contiguous topic segments over the full transcript."""
    last = len(items) - 1
    conversation = "\n".join(
        f"[{idx}] {item.speaker}: {item.text}" for idx, item in enumerate(items)
    )
    topic_lines = "\n".join(f"- {t}" for t in topics)

    return f"""Segment this conversation into topically coherent chunks.

AVAILABLE TOPICS:
{topic_lines}
- {GENERAL_TOPIC} (use when no listed topic fits)

RULES:
1. Each chunk has startIdx and endIdx, both inclusive.
2. Chunks are contiguous: chunk[i].endIdx + 1 == chunk[i+1].startIdx.
3. The first chunk starts at 0 and the last chunk ends at {last}.
4. Every index from 0 to {last} belongs to exactly one chunk.
5. A topic may repeat when the conversation returns to it (A, B, A is three chunks).
6. Prefer natural topic boundaries over equal sizes.

EXAMPLE:
[0] Alice: Let's discuss the budget
[1] Bob: Marketing went over by 15%
[2] Alice: Now about the new feature
[3] Bob: Authentication is ready
[4] Alice: Going back to budget - what about Q3?
[5] Bob: Q3 looks better

-> {{"chunks": [{{"topic": "Budget", "startIdx": 0, "endIdx": 1}},
    {{"topic": "Product Development", "startIdx": 2, "endIdx": 3}},
    {{"topic": "Budget", "startIdx": 4, "endIdx": 5}}]}}

Look for transitions ("let's discuss", "moving on", "regarding"), questions that
change the subject, and returns to earlier topics.

CONVERSATION:
{conversation}

Call {CHUNKING_TOOL_NAME} once with all chunks."""


def _build_chunk(span: _Span, items: list[TranscriptItem]) -> Chunk:
    covered = items[span.start : span.end + 1]
    return Chunk(
        topic=span.topic,
        start_idx=span.start,
        end_idx=span.end,
        content="\n".join(format_transcript_line(item) for item in covered),
        metadata=ChunkMetadata(
            start_time=covered[0].timecode,
            end_time=covered[-1].timecode,
            speakers=list(dict.fromkeys(item.speaker for item in covered)),
        ),
    )
