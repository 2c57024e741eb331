"""Citation-annotated rendering of matches for LLM consumption."""

from __future__ import annotations

from src.pipeline_config import DocumentType
from src.retrieval.models import QueryMatch, TopicGroup

NO_RESULTS = "No relevant content found."

CITATION_INSTRUCTIONS = (
    "When using this information, cite sources using [Source N] "
    "where N is the source number shown below."
)

_RULE = "─" * 40


def format_results(matches: list[QueryMatch], topic_groups: list[TopicGroup] | None = None) -> str:
    """Render matches as numbered ``[Source N]`` blocks, grouped by topic.

    Source numbers follow the order of *matches*. Matches not claimed by any
    non-empty topic group are listed last under "Other Results" (or with no
    heading when there are no groups at all).
    """
    if not matches:
        return NO_RESULTS

    numbers = {match.id: i for i, match in enumerate(matches, 1)}
    by_id = {match.id: match for match in matches}
    groups = [g for g in topic_groups or [] if any(mid in by_id for mid in g.match_ids)]

    parts: list[str] = [CITATION_INSTRUCTIONS, ""]
    grouped_ids: set[str] = set()

    for group in groups:
        parts.extend([f"**{group.topic}**", _RULE])
        for mid in group.match_ids:
            if mid in by_id and mid not in grouped_ids:
                grouped_ids.add(mid)
                parts.append(format_match(by_id[mid], numbers[mid]))

    ungrouped = [m for m in matches if m.id not in grouped_ids]
    if ungrouped:
        if groups:
            parts.extend(["**Other Results**", _RULE])
        parts.extend(format_match(m, numbers[m.id]) for m in ungrouped)

    return "\n".join(parts).rstrip() + "\n"


def format_match(match: QueryMatch, number: int) -> str:
    """One citation header plus the match content."""
    meta = match.metadata
    citation = f"[Source {number}] {meta.title or meta.source or 'Unknown Document'}"
    citation += f" | Type: {meta.document_type or meta.type.value}"

    if meta.type is DocumentType.TRANSCRIPT and meta.speakers:
        citation += f" | Speakers: {', '.join(meta.speakers)}"

    section = meta.section_title or meta.topic
    if section:
        citation += f" | Section: {section}"

    date = meta.meeting_date or meta.created_at
    if date:
        citation += f" | Date: {date.split('T')[0]}"

    citation += f" | Relevance: {match.score * 100:.0f}%"

    if match.merged_ids:
        citation += f" | Merged {len(match.merged_ids)} chunks"

    return f"{citation}\n\n{match.content}\n"
