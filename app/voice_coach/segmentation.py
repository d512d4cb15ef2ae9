from __future__ import annotations

import math
from pathlib import PurePosixPath
from typing import Optional

from .constants import MIN_DURATION_FOR_SEGMENTATION, SEGMENT_DURATION_SECONDS
from .models import SegmentPlan
from .transcript_timing import format_timestamp


MIME_BY_EXTENSION = {
    "mp3": "audio/mpeg",
    "mp4": "audio/mp4",
    "m4a": "audio/x-m4a",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
}

SHORT_CALL_CONTEXT = (
    "This is a short call. Analyze the entire recording. "
    "Focus on opener quality, overall tone, and call close."
)
OPENER_CONTEXT = (
    "This is the opening segment of the call (first ~3 minutes). Evaluate how the sales rep "
    "starts the conversation: confidence, warmth, and energy in their opening."
)
CLOSE_CONTEXT = (
    "This is the closing segment of the call (last ~3 minutes). Evaluate how the sales rep "
    "wraps up: assertiveness, clarity on next steps, and whether energy/confidence is maintained."
)


def audio_format_for_path(audio_path: str) -> tuple[str, str, str]:
    """Return ``(mime_type, extension, model_format)`` for an audio blob path.

    The audio model only accepts ``wav`` and ``mp3`` format hints, so every
    compressed codec is sent as ``mp3``.
    """
    name = PurePosixPath(audio_path or "").name
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    mime_type = MIME_BY_EXTENSION.get(extension, "audio/mpeg")
    model_format = "wav" if extension == "wav" else "mp3"
    return mime_type, extension or "mp3", model_format


def _key_moment_context(start_seconds: float, end_seconds: float, detected: bool) -> str:
    reason = (
        "contains a detected objection, pricing, or competitor discussion"
        if detected
        else "is from the middle of the conversation"
    )
    return (
        "This is a key moment from the middle of the call "
        f"(around {format_timestamp(start_seconds)} to {format_timestamp(end_seconds)}). "
        f"This section {reason}. Focus on how the speaker handles pressure and maintains composure."
    )


def _clamped_middle_window(center_seconds: float, total_duration_seconds: float) -> tuple[float, float]:
    half = SEGMENT_DURATION_SECONDS / 2
    start = max(SEGMENT_DURATION_SECONDS, center_seconds - half)
    end = min(total_duration_seconds - SEGMENT_DURATION_SECONDS, start + SEGMENT_DURATION_SECONDS)
    # Re-derive the start when the end was pulled back against the close window.
    # Calls shorter than three full windows get a narrower middle segment.
    start = max(SEGMENT_DURATION_SECONDS, end - SEGMENT_DURATION_SECONDS)
    return start, end


def plan_segments(
    total_bytes: int,
    total_duration_seconds: float,
    key_moment_timestamp: Optional[float] = None,
) -> list[SegmentPlan]:
    if total_bytes <= 0:
        raise ValueError("Audio is empty; nothing to segment.")

    if total_duration_seconds < MIN_DURATION_FOR_SEGMENTATION:
        return [
            SegmentPlan(
                label="opener",
                start_seconds=0,
                end_seconds=total_duration_seconds,
                start_byte=0,
                end_byte=total_bytes,
                context=SHORT_CALL_CONTEXT,
            )
        ]

    bytes_per_second = total_bytes / total_duration_seconds
    window_bytes = math.floor(SEGMENT_DURATION_SECONDS * bytes_per_second)

    opener = SegmentPlan(
        label="opener",
        start_seconds=0,
        end_seconds=min(SEGMENT_DURATION_SECONDS, total_duration_seconds),
        start_byte=0,
        end_byte=min(window_bytes, total_bytes),
        context=OPENER_CONTEXT,
    )

    detected = key_moment_timestamp is not None
    center = key_moment_timestamp if detected else total_duration_seconds / 2
    key_start, key_end = _clamped_middle_window(center, total_duration_seconds)
    key_moment = SegmentPlan(
        label="key_moment",
        start_seconds=key_start,
        end_seconds=key_end,
        start_byte=math.floor(key_start * bytes_per_second),
        end_byte=math.floor(key_end * bytes_per_second),
        context=_key_moment_context(key_start, key_end, detected),
    )

    close = SegmentPlan(
        label="close",
        start_seconds=max(0, total_duration_seconds - SEGMENT_DURATION_SECONDS),
        end_seconds=total_duration_seconds,
        start_byte=max(0, total_bytes - window_bytes),
        end_byte=total_bytes,
        context=CLOSE_CONTEXT,
    )
    return [opener, key_moment, close]
