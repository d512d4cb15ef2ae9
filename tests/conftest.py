"""Shared fixtures for voice-coach tests."""

from __future__ import annotations

import os

import pytest

# Stores fall back to memory and requests can be signed before any app import.
os.environ.pop("DATABASE_URL", None)
os.environ.setdefault("VOICE_SIGNING_SECRET", "test-signing-secret-0123456789abcdef-extra")

from app.voice_coach.models import (  # noqa: E402
    FillerWords,
    NotableMoment,
    SegmentAnalysis,
    SilenceHandling,
    ToneAssessment,
)
from app.voice_coach.quota import InMemoryQuotaStore  # noqa: E402
from app.voice_coach.storage import InMemoryRecordStore  # noqa: E402


TRANSCRIPT_ID = "11111111-1111-4111-8111-111111111111"
CALL_ID = "22222222-2222-4222-8222-222222222222"
OWNER_ID = "33333333-3333-4333-8333-333333333333"
TEAM_ID = "44444444-4444-4444-8444-444444444444"


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


def make_segment(
    label: str = "opener",
    *,
    wpm: float = 145,
    fillers: int = 3,
    filler_rate: float = 1.0,
    tone: tuple = (80, 80, 80, 80),
    pauses: int = 0,
    rushed: int = 0,
    interruptions: int = 0,
    moments: list | None = None,
) -> SegmentAnalysis:
    confidence, energy, warmth, clarity = tone
    return SegmentAnalysis(
        segment_label=label,
        estimated_wpm=wpm,
        filler_words=FillerWords(count=fillers, examples=["um", "uh"], per_minute=filler_rate),
        tone_assessment=ToneAssessment(confidence=confidence, energy=energy, warmth=warmth, clarity=clarity),
        notable_moments=[NotableMoment(**moment) for moment in (moments or [])],
        interruptions_detected=interruptions,
        silence_handling=SilenceHandling(appropriate_pauses=pauses, rushed_responses=rushed),
    )


@pytest.fixture
def segment_factory():
    return make_segment
