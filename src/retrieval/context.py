"""Context expansion: pull in the chunks adjacent to top matches."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from src.config import settings
from src.retrieval.models import QueryMatch
from src.retrieval.search import VectorQueryClient

logger = logging.getLogger(__name__)

ADJACENT_SCORE_PENALTY = 0.8


def expand_context(
    matches: list[QueryMatch],
    client: VectorQueryClient,
    namespace: str,
    max_workers: int | None = None,
) -> list[QueryMatch]:
    """Add the previous/next chunk of every chunked match from the same file.

    Adjacent chunks score ``original.score * 0.8`` and are skipped when their
    id is already present. Lookups run concurrently; a failed lookup only
    loses that match's neighbours.

    Result order: matches from the same file stay together in chunk order,
    files (and unchunked matches) ordered by their best score descending.
    """
    if not matches:
        return []

    expandable = [
        m for m in matches if m.metadata.file_hash and m.metadata.chunk_index is not None
    ]
    included: dict[str, QueryMatch] = {m.id: m for m in matches}

    if expandable:
        workers = max(1, min(max_workers or settings.expand_context_workers, len(expandable)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                (
                    match,
                    pool.submit(
                        client.fetch_adjacent,
                        match.metadata.file_hash or "",
                        match.metadata.chunk_index or 0,
                        namespace=namespace,
                    ),
                )
                for match in expandable
            ]
            for match, future in futures:
                try:
                    adjacent = future.result()
                except Exception:
                    logger.exception("Failed to fetch chunks adjacent to %s", match.id)
                    continue
                for neighbour in adjacent:
                    if neighbour.id not in included:
                        included[neighbour.id] = neighbour.with_score(
                            match.score * ADJACENT_SCORE_PENALTY
                        )

    expanded = list(included.values())
    logger.debug("Context expansion added %d chunks", len(expanded) - len(matches))
    return order_by_document(expanded)


def order_by_document(matches: list[QueryMatch]) -> list[QueryMatch]:
    """Group by file hash (chunk index ascending), groups by best score descending.

    Groups are ranked by relevance rather than by hash so the strongest file leads.
    """
    groups: dict[str, list[QueryMatch]] = {}
    for match in matches:
        key = f"file:{match.metadata.file_hash}" if match.metadata.file_hash else f"id:{match.id}"
        groups.setdefault(key, []).append(match)

    for members in groups.values():
        members.sort(
            key=lambda m: (m.metadata.chunk_index is None, m.metadata.chunk_index or 0, -m.score)
        )

    ordered = sorted(
        groups.items(), key=lambda kv: (-max(m.score for m in kv[1]), kv[0])
    )
    return [match for _, members in ordered for match in members]
