"""Tests for the LLM reranker, Voyage cross-encoder and fallback chain."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest

from src.errors import RerankError
from src.pipeline_config import RerankMethod
from src.retrieval.models import RerankedResult
from src.retrieval.reranker import (
    MERGE_SEPARATOR,
    RERANK_TOOL_NAME,
    FallbackReranker,
    LLMReranker,
    PassthroughReranker,
    VoyageReranker,
    build_rerank_prompt,
    combine_content,
    content_preview,
)
from tests.conftest import fake_llm_client, make_match


def llm_reranker(payload: dict) -> tuple[LLMReranker, MagicMock]:
    client = fake_llm_client(RERANK_TOOL_NAME, payload)
    return LLMReranker(client=client, model="test-model"), client


def voyage_client(data: list[dict], status_code: int = 200) -> MagicMock:
    return voyage_raw_client({"data": data}, status_code)


def voyage_raw_client(body: object, status_code: int = 200) -> MagicMock:
    request = httpx.Request("POST", "https://voyage.test/v1/rerank")
    response = httpx.Response(status_code, json=body, request=request)
    client = MagicMock(spec=httpx.Client)
    client.post.return_value = response
    return client


class TestContentHelpers:
    def test_preview_short_content_unchanged(self) -> None:
        assert content_preview("abc") == "abc"

    def test_preview_long_content_keeps_head_and_tail(self) -> None:
        content = "a" * 400 + "b" * 200 + "c" * 400
        preview = content_preview(content)
        assert preview.startswith("a" * 400)
        assert preview.endswith("c" * 400)
        assert "b" not in preview

    def test_preview_empty(self) -> None:
        assert content_preview("") == "[NO CONTENT]"

    def test_combine_with_overlap(self) -> None:
        shared = "x" * 60
        assert combine_content(["first " + shared, shared + " second"]) == (
            "first " + shared + " second"
        )

    def test_combine_without_overlap_uses_separator(self) -> None:
        assert combine_content(["one", "two"]) == "one" + MERGE_SEPARATOR + "two"

    def test_prompt_lists_ids(self) -> None:
        prompt = build_rerank_prompt("pricing?", [make_match("a"), make_match("b")], 5)
        assert "ID: a" in prompt and "ID: b" in prompt
        assert "at most 5 matches" in prompt


class TestLLMReranker:
    def test_scores_sorted_and_low_scores_dropped(self) -> None:
        reranker, _ = llm_reranker(
            {
                "matches": [
                    {"id": "a", "score": 0.4},
                    {"id": "b", "score": 0.9},
                    {"id": "c", "score": 0.29},
                ]
            }
        )
        result = reranker.rerank("q", [make_match("a"), make_match("b"), make_match("c")], top_k=5)
        assert [m.id for m in result.matches] == ["b", "a"]
        assert all(m.score >= 0.3 for m in result.matches)
        assert result.method is RerankMethod.LLM

    def test_unknown_and_duplicate_ids_ignored(self) -> None:
        reranker, _ = llm_reranker(
            {
                "matches": [
                    {"id": "ghost", "score": 0.95},
                    {"id": "a", "score": 0.8},
                    {"id": "a", "score": 0.7},
                ]
            }
        )
        result = reranker.rerank("q", [make_match("a")], top_k=5)
        assert [(m.id, m.score) for m in result.matches] == [("a", 0.8)]

    def test_merged_ids_fold_content(self) -> None:
        reranker, _ = llm_reranker(
            {"matches": [{"id": "a", "score": 0.9, "mergedIds": ["b", "missing"]}]}
        )
        result = reranker.rerank(
            "q", [make_match("a", content="alpha"), make_match("b", content="beta")], top_k=5
        )
        match = result.matches[0]
        assert match.merged_ids == ["b"]
        assert match.content == "alpha" + MERGE_SEPARATOR + "beta"
        assert "Merged 1 chunks" in result.formatted_content

    def test_topic_groups(self) -> None:
        reranker, _ = llm_reranker(
            {
                "matches": [
                    {"id": "a", "score": 0.9, "topicId": "t1"},
                    {"id": "b", "score": 0.8, "topicId": "t2"},
                ],
                "topics": [{"id": "t1", "name": "Pricing"}, {"id": "t2", "name": "Hiring"}],
            }
        )
        result = reranker.rerank("q", [make_match("a"), make_match("b")], top_k=5)
        assert result.topic_groups is not None
        assert [(g.topic, g.match_ids) for g in result.topic_groups] == [
            ("Pricing", ["a"]),
            ("Hiring", ["b"]),
        ]
        assert "**Pricing**" in result.formatted_content

    def test_top_k_truncates(self) -> None:
        reranker, _ = llm_reranker(
            {"matches": [{"id": m, "score": 0.5 + i / 10} for i, m in enumerate("abc")]}
        )
        result = reranker.rerank("q", [make_match(m) for m in "abc"], top_k=2)
        assert [m.id for m in result.matches] == ["c", "b"]

    def test_candidates_capped(self) -> None:
        reranker, client = llm_reranker({"matches": []})
        reranker.max_candidates = 3
        reranker.rerank("q", [make_match(f"m{i}") for i in range(10)], top_k=5)
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "ID: m2" in prompt
        assert "ID: m3" not in prompt

    def test_out_of_range_score_raises(self) -> None:
        reranker, _ = llm_reranker({"matches": [{"id": "a", "score": 7}]})
        with pytest.raises(RerankError):
            reranker.rerank("q", [make_match("a")], top_k=5)

    def test_model_failure_raises(self) -> None:
        client = MagicMock()
        client.messages.create.side_effect = RuntimeError("boom")
        with pytest.raises(RerankError):
            LLMReranker(client=client).rerank("q", [make_match("a")], top_k=5)

    def test_empty_input_skips_model(self) -> None:
        reranker, client = llm_reranker({"matches": []})
        result = reranker.rerank("q", [], top_k=5)
        assert result.matches == []
        client.messages.create.assert_not_called()


class TestVoyageReranker:
    def test_returns_original_untruncated_content(self) -> None:
        long_content = "z" * 100
        http = voyage_client([{"index": 1, "relevance_score": 0.9}, {"index": 0, "relevance_score": 0.5}])
        reranker = VoyageReranker(api_key="k", http_client=http, max_doc_chars=10)
        matches = [make_match("a", content="short"), make_match("b", content=long_content)]

        result = reranker.rerank("q", matches, top_k=5)

        sent = http.post.call_args.kwargs["json"]
        assert sent["documents"] == ["short", "z" * 10]
        assert [m.id for m in result.matches] == ["b", "a"]
        assert result.matches[0].content == long_content
        assert result.matches[0].score == 0.9
        assert result.method is RerankMethod.VOYAGE

    def test_threshold_and_bad_indices(self) -> None:
        http = voyage_client(
            [
                {"index": 0, "relevance_score": 0.2},
                {"index": 7, "relevance_score": 0.99},
                {"index": 1, "relevance_score": 0.6},
            ]
        )
        reranker = VoyageReranker(api_key="k", http_client=http)
        result = reranker.rerank("q", [make_match("a"), make_match("b")], top_k=5)
        assert [m.id for m in result.matches] == ["b"]

    def test_missing_api_key_raises(self) -> None:
        with pytest.raises(RerankError):
            VoyageReranker(api_key="").rerank("q", [make_match("a")], top_k=5)

    def test_http_error_raises(self) -> None:
        reranker = VoyageReranker(api_key="k", http_client=voyage_client([], status_code=500))
        with pytest.raises(RerankError):
            reranker.rerank("q", [make_match("a")], top_k=5)

    @pytest.mark.parametrize(
        "body",
        [
            [{"index": 0}],
            {"data": [{"index": "first", "relevance_score": 0.9}]},
            {"data": [{"index": 0, "relevance_score": "high"}]},
            {"data": [{"relevance_score": 0.9}]},
            {"data": "none"},
        ],
    )
    def test_malformed_response_raises(self, body: object) -> None:
        reranker = VoyageReranker(api_key="k", http_client=voyage_raw_client(body))
        with pytest.raises(RerankError):
            reranker.rerank("q", [make_match("a")], top_k=5)


class TestPassthroughReranker:
    def test_sorts_and_truncates(self) -> None:
        result = PassthroughReranker().rerank(
            "q", [make_match("a", 0.2), make_match("b", 0.9), make_match("c", 0.5)], top_k=2
        )
        assert [m.id for m in result.matches] == ["b", "c"]
        assert result.method is RerankMethod.NONE


class TestFallbackReranker:
    def test_falls_back_on_rerank_error(self) -> None:
        failing = MagicMock(method=RerankMethod.LLM)
        failing.rerank.side_effect = RerankError("llm down")
        backup = MagicMock(method=RerankMethod.VOYAGE)
        backup.rerank.return_value = RerankedResult(matches=[], method=RerankMethod.VOYAGE)

        result = FallbackReranker([failing, backup]).rerank("q", [make_match("a")], top_k=3)

        assert result.method is RerankMethod.VOYAGE
        backup.rerank.assert_called_once()

    def test_first_success_skips_rest(self) -> None:
        first = MagicMock(method=RerankMethod.LLM)
        first.rerank.return_value = RerankedResult(matches=[], method=RerankMethod.LLM)
        second = MagicMock(method=RerankMethod.VOYAGE)

        FallbackReranker([first, second]).rerank("q", [make_match("a")], top_k=3)

        second.rerank.assert_not_called()

    def test_all_failed_raises_with_details(self) -> None:
        failing = MagicMock(method=RerankMethod.LLM)
        failing.rerank.side_effect = RerankError("llm down")
        also_failing = MagicMock(method=RerankMethod.VOYAGE)
        also_failing.rerank.side_effect = RerankError("no key")

        with pytest.raises(RerankError) as exc_info:
            FallbackReranker([failing, also_failing]).rerank("q", [make_match("a")], top_k=3)

        assert exc_info.value.details == ["llm: llm down", "voyage: no key"]

    def test_requires_a_strategy(self) -> None:
        with pytest.raises(ValueError):
            FallbackReranker([])
