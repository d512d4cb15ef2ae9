from __future__ import annotations

import base64
import json
import logging
import math
from typing import Any, Optional

from .llm_client import request_audio_analysis
from .models import (
    FillerWords,
    NotableMoment,
    PaceAssessment,
    SegmentAnalysis,
    SegmentPlan,
    SilenceHandling,
    ToneAssessment,
)
from .prompts.voice_coach import SEGMENT_USER_PROMPT_TEMPLATE, SYSTEM_PROMPT


logger = logging.getLogger("uvicorn.error")

NEUTRAL_SCORE = 50
PACE_VALUES = {"too_slow", "good", "too_fast"}
VARIABILITY_VALUES = {"monotone", "some_variation", "dynamic"}
MOMENT_ASSESSMENTS = {"strength", "improvement"}


class SegmentAnalysisError(RuntimeError):
    pass


def _to_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _to_count(value: Any) -> int:
    return max(0, int(_to_float(value, 0.0)))


def _to_score(value: Any) -> float:
    score = _to_float(value, NEUTRAL_SCORE)
    return min(100.0, max(0.0, score))


def _to_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _normalize_moments(value: Any) -> list[NotableMoment]:
    if not isinstance(value, list):
        return []
    moments: list[NotableMoment] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        description = _to_text(item.get("description"))
        if not description:
            continue
        assessment = _to_text(item.get("assessment")).lower()
        if assessment not in MOMENT_ASSESSMENTS:
            assessment = "improvement"
        moments.append(
            NotableMoment(
                description=description,
                assessment=assessment,
                coaching_tip=_to_text(item.get("coaching_tip")),
            )
        )
    return moments


def normalize_segment_analysis(raw: Optional[dict], segment_label: str) -> SegmentAnalysis:
    """Build a structurally complete SegmentAnalysis from whatever the model
    returned. Missing or malformed fields degrade to neutral values."""
    payload = _as_dict(raw)

    fillers = _as_dict(payload.get("filler_words"))
    examples = fillers.get("examples")
    tone = _as_dict(payload.get("tone_assessment"))
    pace = _as_dict(payload.get("pace_assessment"))
    silence = _as_dict(payload.get("silence_handling"))

    overall = _to_text(pace.get("overall")).lower()
    variability = _to_text(pace.get("variability")).lower()

    return SegmentAnalysis(
        segment_label=segment_label,
        estimated_wpm=max(0.0, _to_float(payload.get("estimated_wpm"), 0.0)),
        filler_words=FillerWords(
            count=_to_count(fillers.get("count")),
            examples=[str(item).strip() for item in examples if str(item).strip()]
            if isinstance(examples, list)
            else [],
            per_minute=max(0.0, _to_float(fillers.get("per_minute"), 0.0)),
        ),
        tone_assessment=ToneAssessment(
            confidence=_to_score(tone.get("confidence")),
            energy=_to_score(tone.get("energy")),
            warmth=_to_score(tone.get("warmth")),
            clarity=_to_score(tone.get("clarity")),
        ),
        pace_assessment=PaceAssessment(
            overall=overall if overall in PACE_VALUES else "good",
            variability=variability if variability in VARIABILITY_VALUES else "some_variation",
            recommendation=_to_text(pace.get("recommendation")),
        ),
        notable_moments=_normalize_moments(payload.get("notable_moments")),
        interruptions_detected=_to_count(payload.get("interruptions_detected")),
        silence_handling=SilenceHandling(
            appropriate_pauses=_to_count(silence.get("appropriate_pauses")),
            rushed_responses=_to_count(silence.get("rushed_responses")),
            assessment=_to_text(silence.get("assessment")),
        ),
    )


def _parse_json_with_repair(raw_content: str, segment_label: str) -> dict:
    try:
        parsed = json.loads(raw_content)
    except json.JSONDecodeError:
        start = raw_content.find("{")
        end = raw_content.rfind("}")
        if start == -1 or end <= start:
            raise SegmentAnalysisError(
                f"Audio model returned invalid JSON for segment {segment_label}: {raw_content[:200]}"
            )
        try:
            parsed = json.loads(raw_content[start : end + 1])
        except json.JSONDecodeError as exc:
            raise SegmentAnalysisError(
                f"Audio model output for segment {segment_label} could not be repaired into valid JSON."
            ) from exc

    if not isinstance(parsed, dict):
        raise SegmentAnalysisError(f"Audio model JSON root for segment {segment_label} must be an object.")
    return parsed


def analyze_segment(
    audio_bytes: bytes,
    plan: SegmentPlan,
    segment_index: int,
    segment_total: int,
    audio_format: str,
) -> SegmentAnalysis:
    audio_base64 = base64.b64encode(audio_bytes).decode("ascii")
    logger.info(
        "voice_segment_request segment=%s/%s label=%s audio_mb=%.1f",
        segment_index + 1,
        segment_total,
        plan.label,
        len(audio_bytes) / 1024 / 1024,
    )

    user_text = SEGMENT_USER_PROMPT_TEMPLATE.format(
        segment_number=segment_index + 1,
        segment_total=segment_total,
        segment_label=plan.label,
        segment_context=plan.context,
    )

    try:
        raw_content = request_audio_analysis(
            system_prompt=SYSTEM_PROMPT,
            user_text=user_text,
            audio_base64=audio_base64,
            audio_format=audio_format,
        )
    except RuntimeError as exc:
        raise SegmentAnalysisError(f"Segment {plan.label} failed: {exc}") from exc

    analysis = normalize_segment_analysis(_parse_json_with_repair(raw_content, plan.label), plan.label)
    logger.info(
        "voice_segment_analyzed label=%s wpm=%s confidence=%s fillers=%s",
        plan.label,
        analysis.estimated_wpm,
        analysis.tone_assessment.confidence,
        analysis.filler_words.count,
    )
    return analysis
