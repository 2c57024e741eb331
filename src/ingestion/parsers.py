"""Transcript parsers for VTT, Fathom, plain text, JSON, and markdown documents."""

from __future__ import annotations

import json
import re
from collections.abc import Callable

from src.errors import ParsingError
from src.ingestion.models import TranscriptItem

UNKNOWN_SPEAKER = "Unknown"
DOCUMENT_SPEAKER = "document"

_SPEAKER_RE = re.compile(r"^(.+?):\s+(.+)$")


def _parse_timestamp(ts: str) -> float:
    """Convert ``HH:MM:SS.mmm`` / ``MM:SS`` to seconds."""
    parts = ts.strip().replace(",", ".").split(":")
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours = "0"
        minutes, seconds = parts
    else:
        return 0.0
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_vtt(content: str) -> list[TranscriptItem]:
    """Parse a WebVTT file into transcript items.

    Handles timestamps like ``00:01:23.456 --> 00:01:30.789`` and speaker labels
    in two formats:

    - Standard colon-style: ``Speaker 1: Hello``
    - Microsoft Teams inline voice tags: ``<v SpeakerName>Hello</v>``

    The cue start time becomes the item's timecode.
    """
    items: list[TranscriptItem] = []

    timestamp_re = re.compile(
        r"(\d{1,2}:\d{2}:\d{2}[.,]\d{3})\s*-->\s*(\d{1,2}:\d{2}:\d{2}[.,]\d{3})"
    )
    teams_voice_re = re.compile(r"^<v ([^>]+)>(.*?)(?:</v>)?$", re.DOTALL)

    lines = content.strip().splitlines()
    i = 0
    while i < len(lines):
        match = timestamp_re.search(lines[i].strip())
        if not match:
            i += 1
            continue

        start = _parse_timestamp(match.group(1))

        # Collect text lines until blank line or next timestamp / end
        text_lines: list[str] = []
        i += 1
        while i < len(lines) and lines[i].strip() and not timestamp_re.search(lines[i]):
            text_lines.append(lines[i].strip())
            i += 1

        full_text = " ".join(text_lines)
        speaker = UNKNOWN_SPEAKER

        teams_match = teams_voice_re.match(full_text)
        if teams_match:
            speaker = teams_match.group(1).strip()
            full_text = teams_match.group(2).strip()
        else:
            speaker_match = _SPEAKER_RE.match(full_text)
            if speaker_match:
                speaker = speaker_match.group(1).strip()
                full_text = speaker_match.group(2).strip()

        if full_text:
            items.append(TranscriptItem(timecode=start, speaker=speaker, text=full_text))

    return items


def parse_fathom(content: str) -> list[TranscriptItem]:
    """Parse a Fathom export.

    Each turn is a header line ``M:SS - Speaker Name (Company)`` followed by
    the spoken text on the next non-empty line.
    """
    header_re = re.compile(r"^(\d+:\d+(?::\d+)?)\s*-\s*([^(]+)(?:\([^)]+\))?")
    timestamp_line_re = re.compile(r"^\d+:\d+")

    items: list[TranscriptItem] = []
    lines = content.splitlines()
    i = 0
    while i < len(lines):
        match = header_re.match(lines[i].strip())
        if not match:
            i += 1
            continue

        j = i + 1
        while j < len(lines) and not lines[j].strip():
            j += 1

        if j < len(lines) and not timestamp_line_re.match(lines[j].strip()):
            items.append(
                TranscriptItem(
                    timecode=_parse_timestamp(match.group(1)),
                    speaker=match.group(2).strip(),
                    text=lines[j].strip(),
                )
            )
            i = j
        i += 1

    return items


def parse_plain_text(content: str) -> list[TranscriptItem]:
    """Parse a plain-text transcript.

    If lines start with ``Speaker X:`` the speaker is extracted, otherwise the
    speaker is ``"Unknown"``. Line numbers stand in for timecodes.
    """
    items: list[TranscriptItem] = []

    for line in content.strip().splitlines():
        line = line.strip()
        if not line:
            continue

        timecode = float(len(items))
        match = _SPEAKER_RE.match(line)
        if match:
            items.append(TranscriptItem(timecode, match.group(1).strip(), match.group(2)))
        else:
            items.append(TranscriptItem(timecode, UNKNOWN_SPEAKER, line))

    return items


def parse_json(content: str) -> list[TranscriptItem]:
    """Parse a JSON transcript (AssemblyAI or internal segments format).

    AssemblyAI::

        {"utterances": [{"speaker": "A", "text": "...", "start": ms, "end": ms}]}

    Internal segments format::

        {"segments": [{"speaker": "...", "text": "...", "start_time": s}]}
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ParsingError(f"Invalid JSON transcript: {exc}") from exc

    if not isinstance(data, dict):
        raise ParsingError("Unrecognized JSON transcript format: expected an object")

    items: list[TranscriptItem] = []
    if "utterances" in data:
        # AssemblyAI format: times in milliseconds
        for utt in data["utterances"]:
            items.append(
                TranscriptItem(
                    timecode=utt.get("start", 0) / 1000.0,
                    speaker=utt.get("speaker") or UNKNOWN_SPEAKER,
                    text=utt["text"],
                )
            )
    elif "segments" in data:
        for seg in data["segments"]:
            items.append(
                TranscriptItem(
                    timecode=float(seg.get("start_time") or 0.0),
                    speaker=seg.get("speaker") or UNKNOWN_SPEAKER,
                    text=seg["text"],
                )
            )
    else:
        raise ParsingError(f"Unrecognized JSON transcript format. Keys: {list(data.keys())}")

    return items


def parse_document(content: str) -> list[TranscriptItem]:
    """Split a markdown document into sections on ``#``-``###`` headers.

    Sections become items with speaker ``"document"`` and their index as
    timecode, so documents can reuse the transcript chunking path.
    """
    sections = [s.strip() for s in re.split(r"^#{1,3}\s+", content, flags=re.MULTILINE)]
    return [
        TranscriptItem(timecode=float(idx), speaker=DOCUMENT_SPEAKER, text=section)
        for idx, section in enumerate(s for s in sections if s)
    ]


def detect_format(content: str) -> str:
    """Guess the transcript format from marker strings in *content*."""
    if "WEBVTT" in content:
        return "vtt"
    if "VIEW RECORDING" in content:
        return "fathom"
    stripped = content.lstrip()
    if stripped.startswith("{"):
        return "json"
    raise ParsingError("Unsupported format. Expected WebVTT, Fathom or JSON.")


def parse_transcript(content: str, format: str | None = None) -> list[TranscriptItem]:
    """Dispatch to the correct parser based on *format*.

    Args:
        content: Raw transcript text.
        format: One of ``"vtt"``, ``"fathom"``, ``"text"`` / ``"txt"``,
                ``"json"``, or None to auto-detect.

    Returns:
        Parsed transcript items.

    Raises:
        ParsingError: If *format* is not recognized or cannot be detected.
    """
    dispatch: dict[str, Callable[[str], list[TranscriptItem]]] = {
        "vtt": parse_vtt,
        "webvtt": parse_vtt,
        "fathom": parse_fathom,
        "text": parse_plain_text,
        "txt": parse_plain_text,
        "json": parse_json,
    }

    if format is None:
        format = detect_format(content)

    parser = dispatch.get(format)
    if parser is None:
        msg = f"Unknown transcript format: {format!r}. Supported: {list(dispatch.keys())}"
        raise ParsingError(msg)

    return parser(content)
