"""Rerank strategies: Claude-based semantic reranking and Voyage cross-encoder.

Both implement :class:`RerankStrategy` and report the method that ran, so a
:class:`FallbackReranker` can chain them (LLM first, cross-encoder on failure)
without callers branching on a method string.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import settings
from src.errors import RerankError
from src.llm import generate_structured
from src.pipeline_config import RerankMethod
from src.retrieval.formatting import format_results
from src.retrieval.models import QueryMatch, RerankedResult, TopicGroup

if TYPE_CHECKING:
    from anthropic import Anthropic

logger = logging.getLogger(__name__)

# LLM reranker
LLM_MIN_SCORE = 0.3
LLM_MAX_CANDIDATES = 30  # candidates shown to the model per request
PREVIEW_EDGE_CHARS = 400
RERANK_TOOL_NAME = "store_reranked_results"

# Overlap-aware merge window, in characters
MERGE_MAX_OVERLAP = 200
MERGE_MIN_OVERLAP = 50
MERGE_SEPARATOR = "\n\n[...]\n\n"

# Cross-encoder: ~10K tokens per document
CROSS_ENCODER_MAX_DOC_CHARS = 40_000
CROSS_ENCODER_SCORE_THRESHOLD = 0.33


class RerankStrategy(Protocol):
    """Reorders, filters and deduplicates candidate matches."""

    method: RerankMethod

    def rerank(self, query: str, matches: list[QueryMatch], *, top_k: int) -> RerankedResult: ...


# ---------------------------------------------------------------------------
# LLM reranker
# ---------------------------------------------------------------------------

RERANK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "matches": {
            "type": "array",
            "description": "Matches to keep, with scores and grouping.",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string", "description": "ID from the search results."},
                    "score": {
                        "type": "number",
                        "minimum": 0,
                        "maximum": 1,
                        "description": "Relevance score between 0 and 1.",
                    },
                    "topicId": {
                        "type": "string",
                        "description": "ID of the topic group this match belongs to.",
                    },
                    "mergedIds": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "IDs of duplicate results merged into this one.",
                    },
                },
                "required": ["id", "score"],
            },
        },
        "topics": {
            "type": "array",
            "description": "Topic groups used to organise the matches.",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {
                        "type": "string",
                        "description": "Short descriptive topic name (3-6 words).",
                    },
                },
                "required": ["id", "name"],
            },
        },
    },
    "required": ["matches"],
}

RERANK_SYSTEM_PROMPT = (
    "You analyse search results for a retrieval system and report your analysis "
    "through the store_reranked_results tool.\n\n"
    "Tasks:\n"
    "1. DEDUPLICATE: merge results about the same specific example, the same speaker "
    "on the same topic within two minutes, or with more than 50% overlapping content. "
    "Keep the best result as primary and list the others in mergedIds.\n"
    "2. SCORE relevance to the query from 0 to 1: 0.8-1.0 directly answers it, "
    "0.5-0.79 useful context, 0.3-0.49 tangential, below 0.3 irrelevant.\n"
    "3. GROUP into 2-5 topic groups when there are more than 3 results.\n"
    "4. FILTER: omit results scoring below 0.3."
)


class _LLMMatch(BaseModel):
    id: str
    score: float = Field(ge=0.0, le=1.0)
    topic_id: str | None = Field(default=None, alias="topicId")
    merged_ids: list[str] = Field(default_factory=list, alias="mergedIds")


class _LLMTopic(BaseModel):
    id: str
    name: str


class _LLMRerankResponse(BaseModel):
    matches: list[_LLMMatch]
    topics: list[_LLMTopic] = Field(default_factory=list)


class _VoyageItem(BaseModel):
    index: int
    relevance_score: float


class _VoyageRerankResponse(BaseModel):
    data: list[_VoyageItem] = Field(default_factory=list)


def content_preview(content: str) -> str:
    """Head and tail of long content, to keep the rerank prompt small."""
    if not content:
        return "[NO CONTENT]"
    if len(content) <= 2 * PREVIEW_EDGE_CHARS:
        return content
    return f"{content[:PREVIEW_EDGE_CHARS]}...[truncated]...{content[-PREVIEW_EDGE_CHARS:]}"


def build_rerank_prompt(query: str, matches: list[QueryMatch], max_results: int) -> str:
    blocks: list[str] = []
    for match in matches:
        meta = match.metadata
        lines = [
            f"ID: {match.id}",
            f"Document: {meta.title or meta.source or 'Unknown'}",
            f"Type: {meta.document_type or meta.type.value}",
        ]
        if meta.speakers:
            lines.append(f"Speakers: {', '.join(meta.speakers)}")
        lines.append(f"Content: {content_preview(match.content)}")
        blocks.append("\n".join(lines))

    results = "\n---\n".join(blocks)
    return (
        f'Query: "{query}"\n\n'
        f"Search Results ({len(matches)} total):\n{results}\n\n"
        f"Score, deduplicate and group these results. Only use IDs listed above. "
        f"Return at most {max_results} matches."
    )


def combine_content(contents: list[str]) -> str:
    """Concatenate contents, collapsing suffix/prefix overlaps.

    For each next piece, windows from 200 down to 50 characters are tried; on
    a suffix-of-combined == prefix-of-next hit only the remainder is appended,
    otherwise the pieces are joined with an explicit ``[...]`` separator.
    """
    if not contents:
        return ""

    combined = contents[0]
    for current in contents[1:]:
        for size in range(min(MERGE_MAX_OVERLAP, len(combined), len(current)), MERGE_MIN_OVERLAP - 1, -1):
            if combined[-size:] == current[:size]:
                combined += current[size:]
                break
        else:
            combined += MERGE_SEPARATOR + current
    return combined


def apply_llm_ranking(
    response: _LLMRerankResponse, candidates: list[QueryMatch], top_k: int
) -> tuple[list[QueryMatch], list[TopicGroup]]:
    """Turn a validated model response into ranked matches and topic groups.

    Drops low scores and unknown ids, deduplicates, folds merged candidates
    into their primary and sorts by score descending.
    """
    by_id = {m.id: m for m in candidates}
    seen: set[str] = set()
    ranked: list[QueryMatch] = []

    for item in response.matches:
        if item.score < LLM_MIN_SCORE or item.id in seen:
            continue
        original = by_id.get(item.id)
        if original is None:
            logger.warning("LLM reranker returned unknown id %r, skipping", item.id)
            continue
        seen.add(item.id)

        merged_ids: list[str] = []
        contents = [original.content]
        for merged_id in item.merged_ids:
            if merged_id in seen:
                continue
            merged = by_id.get(merged_id)
            if merged is None:
                logger.warning("LLM reranker merged unknown id %r, ignoring", merged_id)
                continue
            seen.add(merged_id)
            merged_ids.append(merged_id)
            contents.append(merged.content)

        ranked.append(
            QueryMatch(
                id=original.id,
                score=item.score,
                content=combine_content(contents) if merged_ids else original.content,
                metadata=original.metadata,
                topic_id=item.topic_id,
                merged_ids=merged_ids,
            )
        )

    ranked.sort(key=lambda m: m.score, reverse=True)
    ranked = ranked[:top_k]

    topic_groups = [
        TopicGroup(
            id=topic.id,
            topic=topic.name,
            match_ids=[m.id for m in ranked if m.topic_id == topic.id],
        )
        for topic in response.topics
    ]
    return ranked, topic_groups


class LLMReranker:
    """Claude-based semantic reranker with deduplication and topic grouping."""

    method = RerankMethod.LLM

    def __init__(
        self,
        client: Anthropic | None = None,
        model: str | None = None,
        max_candidates: int = LLM_MAX_CANDIDATES,
    ) -> None:
        self.client = client
        self.model = model or settings.rerank_llm_model
        self.max_candidates = max_candidates

    def rerank(self, query: str, matches: list[QueryMatch], *, top_k: int) -> RerankedResult:
        if not matches:
            return RerankedResult(matches=[], method=self.method, topic_groups=[],
                                  formatted_content=format_results([]))

        candidates = matches[: self.max_candidates]
        started = time.perf_counter()
        try:
            raw = generate_structured(
                build_rerank_prompt(query, candidates, top_k),
                tool_name=RERANK_TOOL_NAME,
                description="Store the scored, deduplicated and grouped search results.",
                input_schema=RERANK_SCHEMA,
                system=RERANK_SYSTEM_PROMPT,
                model=self.model,
                client=self.client,
                temperature=0.1,
            )
            response = _LLMRerankResponse.model_validate(raw)
        except SchemaValidationError as exc:
            raise RerankError("LLM rerank response failed schema validation", exc.errors()) from exc
        except Exception as exc:
            raise RerankError(f"LLM rerank call failed: {exc}") from exc

        ranked, topic_groups = apply_llm_ranking(response, candidates, top_k)
        logger.info(
            "LLM reranker kept %d of %d candidates in %d topic groups (%.0fms)",
            len(ranked),
            len(candidates),
            len(topic_groups),
            (time.perf_counter() - started) * 1000,
        )
        return RerankedResult(
            matches=ranked,
            method=self.method,
            topic_groups=topic_groups,
            formatted_content=format_results(ranked, topic_groups),
        )


# ---------------------------------------------------------------------------
# Cross-encoder reranker (Voyage AI)
# ---------------------------------------------------------------------------


class VoyageReranker:
    """Cross-encoder reranking through the Voyage AI rerank endpoint.

    Documents are truncated to fit the model's context window for scoring
    only; returned matches always carry their original content.
    """

    method = RerankMethod.VOYAGE

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        http_client: httpx.Client | None = None,
        score_threshold: float = CROSS_ENCODER_SCORE_THRESHOLD,
        max_doc_chars: int = CROSS_ENCODER_MAX_DOC_CHARS,
    ) -> None:
        self.api_key = settings.voyage_api_key if api_key is None else api_key
        self.model = model or settings.voyage_rerank_model
        self.http_client = http_client
        self.score_threshold = score_threshold
        self.max_doc_chars = max_doc_chars

    def rerank(self, query: str, matches: list[QueryMatch], *, top_k: int) -> RerankedResult:
        if not self.api_key:
            raise RerankError("Voyage API key is required for cross-encoder reranking")
        if not matches:
            return RerankedResult(matches=[], method=self.method, formatted_content=format_results([]))

        payload = {
            "query": query,
            "documents": [m.content[: self.max_doc_chars] for m in matches],
            "model": self.model,
            "top_k": min(top_k, len(matches)),
            "truncation": True,
        }
        try:
            response = _VoyageRerankResponse.model_validate(self._post(payload))
        except SchemaValidationError as exc:
            raise RerankError("Voyage rerank response failed schema validation", exc.errors()) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise RerankError(f"Voyage rerank failed: {exc}") from exc

        ranked: list[QueryMatch] = []
        for item in response.data:
            index, score = item.index, item.relevance_score
            if not 0 <= index < len(matches) or score < self.score_threshold:
                continue
            # Scores from the cross-encoder; content from the untruncated original.
            ranked.append(matches[index].with_score(min(1.0, max(0.0, score))))

        ranked.sort(key=lambda m: m.score, reverse=True)
        ranked = ranked[:top_k]
        logger.info(
            "Voyage reranker kept %d of %d candidates with score >= %.2f",
            len(ranked),
            len(matches),
            self.score_threshold,
        )
        return RerankedResult(
            matches=ranked, method=self.method, formatted_content=format_results(ranked)
        )

    @retry(
        reraise=True,
        stop=stop_after_attempt(settings.retry_attempts),
        wait=wait_exponential(multiplier=0.5, max=settings.retry_max_wait_seconds),
        retry=retry_if_exception_type(httpx.TransportError),
    )
    def _post(self, payload: dict[str, Any]) -> Any:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.http_client is not None:
            response = self.http_client.post(settings.voyage_api_url, json=payload, headers=headers)
        else:
            response = httpx.post(
                settings.voyage_api_url,
                json=payload,
                headers=headers,
                timeout=settings.request_timeout_seconds,
            )
        response.raise_for_status()
        return response.json()


# ---------------------------------------------------------------------------
# Passthrough and fallback chain
# ---------------------------------------------------------------------------


class PassthroughReranker:
    """No reranking: keep vector order and take the top K."""

    method = RerankMethod.NONE

    def rerank(self, query: str, matches: list[QueryMatch], *, top_k: int) -> RerankedResult:
        kept = sorted(matches, key=lambda m: m.score, reverse=True)[:top_k]
        return RerankedResult(matches=kept, method=self.method, formatted_content=format_results(kept))


class FallbackReranker:
    """Try strategies in order until one succeeds.

    Raises:
        RerankError: When every strategy failed; ``details`` lists each error.
    """

    def __init__(self, strategies: list[RerankStrategy]) -> None:
        if not strategies:
            raise ValueError("FallbackReranker needs at least one strategy")
        self.strategies = strategies

    @property
    def method(self) -> RerankMethod:
        return self.strategies[0].method

    def rerank(self, query: str, matches: list[QueryMatch], *, top_k: int) -> RerankedResult:
        failures: list[str] = []
        for strategy in self.strategies:
            try:
                return strategy.rerank(query, matches, top_k=top_k)
            except RerankError as exc:
                logger.warning("%s reranking failed: %s", strategy.method.value, exc.message)
                failures.append(f"{strategy.method.value}: {exc.message}")

        raise RerankError("All rerank strategies failed", failures)
