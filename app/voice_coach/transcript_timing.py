from __future__ import annotations

import re
from typing import Optional

from .constants import SEGMENT_DURATION_SECONDS


LINE_TIMESTAMP_PATTERN = re.compile(r"^\[(\d{2}):(\d{2})\]")
ANY_TIMESTAMP_PATTERN = re.compile(r"\[(\d{2}):(\d{2})\]")
TRANSCRIPT_END_BUFFER_SECONDS = 30
WAV_BITRATE_BPS = 1_411_200
COMPRESSED_BITRATE_BPS = 128_000

KEY_MOMENT_KEYWORDS = (
    "price",
    "pricing",
    "cost",
    "costs",
    "budget",
    "concern",
    "concerns",
    "worried",
    "worry",
    "competitor",
    "competitors",
    "alternative",
    "alternatives",
    "objection",
    "objections",
    "pushback",
    "expensive",
    "cheap",
    "afford",
    "discount",
    "deal",
    "offer",
    "not sure",
    "not interested",
    "think about it",
    "challenge",
    "problem",
    "issue",
)


def _to_seconds(minutes: str, seconds: str) -> int:
    return int(minutes) * 60 + int(seconds)


def format_timestamp(seconds: float) -> str:
    total = int(max(seconds, 0))
    return f"{total // 60}:{total % 60:02d}"


def score_line(line: str) -> int:
    lowered = line.lower()
    return sum(1 for keyword in KEY_MOMENT_KEYWORDS if keyword in lowered)


def find_key_moment_timestamp(transcript_text: str, total_duration_seconds: float) -> Optional[int]:
    """Return the timestamp (seconds) of the line with the most objection,
    pricing or competitor keywords, ignoring the opener and close windows.

    Lines look like ``[MM:SS] text``. The first line to reach the best score
    wins; ``None`` when nothing in the middle of the call matches.
    """
    best_timestamp: Optional[int] = None
    best_score = 0

    for line in (transcript_text or "").split("\n"):
        match = LINE_TIMESTAMP_PATTERN.match(line)
        if not match:
            continue

        line_timestamp = _to_seconds(match.group(1), match.group(2))
        if (
            line_timestamp < SEGMENT_DURATION_SECONDS
            or line_timestamp > total_duration_seconds - SEGMENT_DURATION_SECONDS
        ):
            continue

        score = score_line(line)
        if score > best_score:
            best_score = score
            best_timestamp = line_timestamp

    return best_timestamp


def estimate_duration_from_transcript(transcript_text: str) -> int:
    max_timestamp = 0
    for minutes, seconds in ANY_TIMESTAMP_PATTERN.findall(transcript_text or ""):
        max_timestamp = max(max_timestamp, _to_seconds(minutes, seconds))
    if max_timestamp <= 0:
        return 0
    # The last marker opens the final utterance, which still runs for a while.
    return max_timestamp + TRANSCRIPT_END_BUFFER_SECONDS


def estimate_duration_from_size(byte_size: int, audio_format: str) -> int:
    bitrate = WAV_BITRATE_BPS if audio_format == "wav" else COMPRESSED_BITRATE_BPS
    return int((max(byte_size, 0) * 8) / bitrate + 0.5)
