"""Query pipeline: filter -> search -> rerank -> expand -> format -> cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from src.errors import RAGError, RerankError
from src.pipeline_config import PipelineConfig, RerankMethod
from src.retrieval.cache import ResultCache, make_cache_key
from src.retrieval.context import expand_context
from src.retrieval.filters import build_filter
from src.retrieval.formatting import format_results
from src.retrieval.models import QueryMatch, QueryRequest, RerankedResult
from src.retrieval.reranker import (
    FallbackReranker,
    LLMReranker,
    PassthroughReranker,
    RerankStrategy,
    VoyageReranker,
)
from src.retrieval.search import VectorQueryClient

logger = logging.getLogger(__name__)

MAX_TOP_K = 50


class RAGQueryEngine:
    """Runs one request-scoped query pipeline per call.

    All collaborators are injected; the cache is the only state shared
    between requests.
    """

    def __init__(
        self,
        client: VectorQueryClient,
        *,
        llm_reranker: RerankStrategy | None = None,
        cross_encoder: RerankStrategy | None = None,
        cache: ResultCache | None = None,
        config: PipelineConfig | None = None,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.client = client
        self.llm_reranker = llm_reranker or LLMReranker()
        self.cross_encoder = cross_encoder or VoyageReranker()
        self.cache = cache if cache is not None else ResultCache()
        self.config = config or PipelineConfig()
        self._timer = timer

    def reranker_for(self, method: RerankMethod) -> RerankStrategy:
        """LLM falls back to the cross-encoder; the cross-encoder runs alone."""
        if method is RerankMethod.LLM:
            return FallbackReranker([self.llm_reranker, self.cross_encoder])
        if method is RerankMethod.VOYAGE:
            return FallbackReranker([self.cross_encoder])
        return PassthroughReranker()

    def query(self, request: QueryRequest, namespace: str) -> dict[str, Any]:
        """Execute *request* inside *namespace*.

        Never raises: failures come back as
        ``{"success": False, "error": ..., "query": ...}``.
        """
        started = self._timer()
        cache_key = make_cache_key(request, namespace)

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for namespace %s", namespace)
            return cached

        try:
            response = self._run(request, namespace, started)
        except RAGError as exc:
            logger.error("RAG query failed in namespace %s: %s", namespace, exc.message)
            return {"success": False, "error": exc.message, "query": request.query}
        except Exception as exc:
            logger.exception("RAG query failed in namespace %s", namespace)
            return {"success": False, "error": str(exc) or type(exc).__name__, "query": request.query}

        self.cache.set(cache_key, response)
        return response

    def _run(self, request: QueryRequest, namespace: str, started: float) -> dict[str, Any]:
        top_k = min(max(request.top_k or self.config.top_k, 1), MAX_TOP_K)

        result = self.client.query(
            request.query,
            namespace=namespace,
            top_k=self.config.fetch_size(top_k),
            filter=build_filter(request),
            min_score=self.config.min_score,
        )

        metadata: dict[str, Any] = {}
        reranked = self._rerank(request, result.matches, top_k, metadata)
        matches = reranked.matches
        topic_groups = reranked.topic_groups or []
        content = reranked.formatted_content

        if (request.expand_context or self.config.expand_context) and matches:
            matches = expand_context(matches, self.client, namespace)
            content = format_results(matches, topic_groups)

        metadata["rerankMethod"] = reranked.method.value
        if topic_groups:
            metadata["topicGroups"] = [g.to_dict() for g in topic_groups]
            metadata["topicCount"] = len(topic_groups)

        duration_ms = round((self._timer() - started) * 1000)
        logger.info(
            "RAG query in namespace %s: %d candidates -> %d matches via %s (%dms)",
            namespace,
            len(result.matches),
            len(matches),
            reranked.method.value,
            duration_ms,
        )
        return {
            "success": True,
            "query": request.query,
            "matches": [m.to_dict() for m in matches],
            "matchCount": len(matches),
            "content": content or format_results(matches, topic_groups),
            "namespace": result.namespace,
            "duration": f"{duration_ms}ms",
            "metadata": metadata,
        }

    def _rerank(
        self,
        request: QueryRequest,
        matches: list[QueryMatch],
        top_k: int,
        metadata: dict[str, Any],
    ) -> RerankedResult:
        if not matches:
            return RerankedResult(matches=[], method=RerankMethod.NONE)

        try:
            method = request.rerank_method or self.config.rerank_method
            return self.reranker_for(method).rerank(
                request.query, matches, top_k=top_k
            )
        except RerankError as exc:
            # Every strategy failed: keep vector order and report why.
            logger.error("Reranking unavailable, using vector order: %s", exc.details)
            metadata["rerankError"] = exc.message
            return PassthroughReranker().rerank(request.query, matches, top_k=top_k)
