"""Tests for topic chunking: contiguity, repair, fallback and heuristic mode."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from src.ingestion.chunking import (
    CHUNKING_TOOL_NAME,
    GENERAL_TOPIC,
    _Span,
    chunk_transcript,
    format_transcript_line,
    heuristic_spans,
    repair_spans,
)
from src.ingestion.models import Chunk, ChunkOptions, TranscriptItem
from tests.conftest import create_mock_transcript, fake_llm_client

TOPICS = ["Planning", "Budget", "Technical"]


def assert_contiguous(chunks: list[Chunk], total: int) -> None:
    assert chunks[0].start_idx == 0
    assert chunks[-1].end_idx == total - 1
    for previous, current in zip(chunks, chunks[1:], strict=False):
        assert current.start_idx == previous.end_idx + 1
    assert sum(c.end_idx - c.start_idx + 1 for c in chunks) == total


def ai_client(segments: list[dict]) -> MagicMock:
    return fake_llm_client(CHUNKING_TOOL_NAME, {"chunks": segments})


class TestFormatTranscriptLine:
    def test_fractional_timecode(self) -> None:
        item = TranscriptItem(timecode=5.5, speaker="Alice", text="Hello world")
        assert format_transcript_line(item) == "[5.5s] Alice: Hello world"

    def test_integer_timecode_has_no_decimal(self) -> None:
        item = TranscriptItem(timecode=12.0, speaker="Bob", text="Hi")
        assert format_transcript_line(item) == "[12s] Bob: Hi"


class TestEmptyInput:
    def test_empty_returns_empty_list(self) -> None:
        assert chunk_transcript([], TOPICS) == []

    def test_empty_dry_run_returns_empty_list(self) -> None:
        assert chunk_transcript([], TOPICS, ChunkOptions(dry_run=True)) == []

    def test_empty_never_calls_model(self) -> None:
        client = MagicMock()
        chunk_transcript([], TOPICS, client=client)
        client.messages.create.assert_not_called()


class TestDryRun:
    def test_mock_transcript_with_large_chunk_size(self) -> None:
        items = create_mock_transcript(10)
        chunks = chunk_transcript(items, TOPICS, ChunkOptions(dry_run=True, chunk_size=200))
        assert chunks
        assert_contiguous(chunks, 10)

    def test_small_chunk_size_produces_several_chunks(self) -> None:
        items = create_mock_transcript(50)
        chunks = chunk_transcript(items, TOPICS, ChunkOptions(dry_run=True, chunk_size=8))
        assert len(chunks) > 1
        assert_contiguous(chunks, 50)

    def test_topics_come_from_vocabulary(self) -> None:
        items = create_mock_transcript(40)
        chunks = chunk_transcript(items, TOPICS, ChunkOptions(dry_run=True, chunk_size=10))
        assert {c.topic for c in chunks} <= set(TOPICS)

    def test_no_topics_uses_general_discussion(self) -> None:
        chunks = chunk_transcript(create_mock_transcript(5), [], ChunkOptions(dry_run=True))
        assert [c.topic for c in chunks] == [GENERAL_TOPIC]

    def test_never_calls_model(self) -> None:
        client = MagicMock()
        chunk_transcript(create_mock_transcript(10), TOPICS, ChunkOptions(dry_run=True), client)
        client.messages.create.assert_not_called()

    def test_prefers_speaker_change_boundary(self) -> None:
        items = [TranscriptItem(float(i), "Alice", f"line {i}") for i in range(6)]
        items += [TranscriptItem(float(i), "Bob", f"line {i}") for i in range(6, 12)]
        spans = heuristic_spans(items, [], chunk_size=8)
        assert spans[0].end == 5
        assert spans[1].start == 6

    def test_long_pause_is_a_boundary(self) -> None:
        items = [TranscriptItem(float(i), "Alice", "x") for i in range(5)]
        items += [TranscriptItem(100.0 + i, "Alice", "y") for i in range(5)]
        spans = heuristic_spans(items, [], chunk_size=7)
        assert spans[0].end == 4

    def test_chunk_metadata(self) -> None:
        items = create_mock_transcript(4)
        chunk = chunk_transcript(items, TOPICS, ChunkOptions(dry_run=True))[0]
        assert chunk.metadata.start_time == 0.0
        assert chunk.metadata.end_time == 30.0
        assert chunk.metadata.speakers == ["Alice", "Bob", "Carol"]
        assert chunk.content.splitlines()[0] == format_transcript_line(items[0])


class TestAIChunking:
    def test_topic_repetition_preserved(self) -> None:
        client = ai_client(
            [
                {"topic": "Budget", "startIdx": 0, "endIdx": 1},
                {"topic": "Product", "startIdx": 2, "endIdx": 3},
                {"topic": "Budget", "startIdx": 4, "endIdx": 5},
            ]
        )
        chunks = chunk_transcript(create_mock_transcript(6), ["Budget", "Product"], client=client)
        assert [c.topic for c in chunks] == ["Budget", "Product", "Budget"]
        assert_contiguous(chunks, 6)

    def test_gap_repaired(self) -> None:
        client = ai_client(
            [
                {"topic": "Topic1", "startIdx": 0, "endIdx": 1},
                {"topic": "Topic1", "startIdx": 3, "endIdx": 4},
            ]
        )
        chunks = chunk_transcript(create_mock_transcript(5), ["Topic1"], client=client)
        assert len(chunks) == 2
        assert chunks[-1].end_idx == 4
        assert_contiguous(chunks, 5)

    def test_short_final_chunk_extended(self) -> None:
        client = ai_client([{"topic": "Planning", "startIdx": 0, "endIdx": 3}])
        chunks = chunk_transcript(create_mock_transcript(10), TOPICS, client=client)
        assert_contiguous(chunks, 10)

    def test_long_transcript_sent_in_one_call(self) -> None:
        items = create_mock_transcript(250)
        client = ai_client(
            [
                {"topic": "Planning", "startIdx": 0, "endIdx": 119},
                {"topic": "Budget", "startIdx": 120, "endIdx": 200},
            ]
        )

        chunks = chunk_transcript(items, TOPICS, client=client)

        client.messages.create.assert_called_once()
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert f"[0] {items[0].speaker}: {items[0].text}" in prompt
        assert f"[249] {items[249].speaker}: {items[249].text}" in prompt
        assert "[250]" not in prompt
        assert chunks[-1].end_idx == 249
        assert_contiguous(chunks, 250)

    def test_model_error_falls_back_to_single_chunk(self) -> None:
        client = MagicMock()
        client.messages.create.side_effect = RuntimeError("overloaded")
        chunks = chunk_transcript(create_mock_transcript(8), TOPICS, client=client)
        assert len(chunks) == 1
        assert chunks[0].topic == GENERAL_TOPIC
        assert (chunks[0].start_idx, chunks[0].end_idx) == (0, 7)

    def test_malformed_response_falls_back(self) -> None:
        client = fake_llm_client(CHUNKING_TOOL_NAME, {"chunks": [{"topic": "x"}]})
        chunks = chunk_transcript(create_mock_transcript(3), TOPICS, client=client)
        assert [(c.topic, c.start_idx, c.end_idx) for c in chunks] == [(GENERAL_TOPIC, 0, 2)]

    def test_empty_chunk_list_falls_back(self) -> None:
        client = ai_client([])
        chunks = chunk_transcript(create_mock_transcript(3), TOPICS, client=client)
        assert len(chunks) == 1

    def test_model_override_is_used(self) -> None:
        client = ai_client([{"topic": "Planning", "startIdx": 0, "endIdx": 2}])
        chunk_transcript(create_mock_transcript(3), TOPICS, ChunkOptions(model="m-1"), client)
        assert client.messages.create.call_args.kwargs["model"] == "m-1"
        assert client.messages.create.call_args.kwargs["tool_choice"] == {
            "type": "tool",
            "name": CHUNKING_TOOL_NAME,
        }

    def test_uses_default_client_when_none_given(self) -> None:
        client = ai_client([{"topic": "Planning", "startIdx": 0, "endIdx": 1}])
        with patch("src.llm.get_anthropic_client", return_value=client):
            chunks = chunk_transcript(create_mock_transcript(2), TOPICS)
        assert chunks[0].topic == "Planning"


class TestRepairSpans:
    def test_first_span_starts_at_zero(self) -> None:
        spans = repair_spans([_Span("A", 2, 4)], 5)
        assert (spans[0].start, spans[0].end) == (0, 4)

    def test_overlap_trims_later_span(self) -> None:
        spans = repair_spans([_Span("A", 0, 3), _Span("B", 2, 5)], 6)
        assert [(s.start, s.end) for s in spans] == [(0, 3), (4, 5)]

    def test_fully_overlapped_span_dropped(self) -> None:
        spans = repair_spans([_Span("A", 0, 5), _Span("B", 1, 3)], 6)
        assert [(s.topic, s.start, s.end) for s in spans] == [("A", 0, 5)]

    def test_out_of_order_spans_sorted(self) -> None:
        spans = repair_spans([_Span("B", 3, 5), _Span("A", 0, 2)], 6)
        assert [s.topic for s in spans] == ["A", "B"]

    def test_out_of_range_indices_clamped(self) -> None:
        spans = repair_spans([_Span("A", 0, 2), _Span("B", 3, 99)], 5)
        assert spans[-1].end == 4
