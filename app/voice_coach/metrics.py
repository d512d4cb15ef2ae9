from __future__ import annotations

import math
from typing import Iterable

from .constants import SEGMENT_DURATION_SECONDS
from .models import CoachingTip, MergedAnalysis, SegmentAnalysis, VoiceMetrics


IDEAL_WPM_LOW = 130
IDEAL_WPM_HIGH = 160
EXTREME_WPM_LOW = 100
EXTREME_WPM_HIGH = 190
FILLER_RATE_FREE_PER_MIN = 2.0
HIGH_FILLER_RATE_PER_MIN = 4.0
MAX_RUSHED_RESPONSES = 2
DEFAULT_SILENCE_SCORE = 75
MAX_TIP_TITLE_CHARS = 80

SCORE_WEIGHTS = {
    "tone": 0.40,
    "wpm": 0.20,
    "filler": 0.20,
    "interruption": 0.10,
    "silence": 0.10,
}

GRADE_THRESHOLDS = [
    (95, "A+"),
    (90, "A"),
    (87, "A-"),
    (83, "B+"),
    (80, "B"),
    (77, "B-"),
    (73, "C+"),
    (70, "C"),
    (67, "C-"),
    (63, "D+"),
    (60, "D"),
    (57, "D-"),
]

CATEGORY_KEYWORDS = [
    ("pace", ("pace", "speed", "fast", "slow", "wpm")),
    ("filler", ("filler", "um", "uh", "like")),
    ("energy", ("energy", "enthusiasm", "flat", "monotone")),
    ("silence", ("pause", "silence", "rush")),
    ("tone", ("tone", "confidence", "warmth", "clarity")),
]


class NoSegmentsAnalyzedError(RuntimeError):
    pass


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


def infer_category(description: str) -> str:
    lowered = (description or "").lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return "engagement"


def _truncate_title(text: str) -> str:
    if len(text) <= MAX_TIP_TITLE_CHARS:
        return text
    return text[: MAX_TIP_TITLE_CHARS - 3] + "..."


def _segment_tips(segment: SegmentAnalysis) -> list[CoachingTip]:
    label = segment.segment_label
    tips = [
        CoachingTip(
            category=infer_category(moment.description),
            severity="positive" if moment.assessment == "strength" else "improvement",
            title=_truncate_title(moment.description),
            description=moment.coaching_tip,
            segment=label,
        )
        for moment in segment.notable_moments
    ]

    pace = segment.pace_assessment
    if pace.overall != "good" and pace.recommendation:
        direction = "too fast" if pace.overall == "too_fast" else "too slow"
        tips.append(
            CoachingTip(
                category="pace",
                severity="improvement",
                title=f"Pace {direction} in {label}",
                description=pace.recommendation,
                segment=label,
            )
        )

    fillers = segment.filler_words
    if fillers.per_minute > HIGH_FILLER_RATE_PER_MIN:
        examples = ", ".join(fillers.examples[:3])
        tips.append(
            CoachingTip(
                category="filler",
                severity="improvement",
                title=f"High filler word usage in {label}",
                description=(
                    f"Detected {fillers.count} filler words ({fillers.per_minute:.1f}/min) "
                    f"including: {examples}. Practice pausing instead of filling silence."
                ),
                segment=label,
            )
        )

    if segment.silence_handling.rushed_responses > MAX_RUSHED_RESPONSES:
        tips.append(
            CoachingTip(
                category="silence",
                severity="improvement",
                title=f"Rushed responses in {label}",
                description=segment.silence_handling.assessment,
                segment=label,
            )
        )
    return tips


def merge_segment_analyses(segments: list[SegmentAnalysis]) -> MergedAnalysis:
    if not segments:
        raise NoSegmentsAnalyzedError("All segment analyses failed; no voice analysis data produced.")

    count = len(segments)
    total_fillers = sum(segment.filler_words.count for segment in segments)
    total_minutes = count * (SEGMENT_DURATION_SECONDS / 60)
    filler_rate = total_fillers / total_minutes

    metrics = VoiceMetrics(
        avg_wpm=int(round_half_up(_mean(s.estimated_wpm for s in segments))),
        total_filler_words=total_fillers,
        filler_words_per_minute=round_half_up(filler_rate, 1),
        avg_confidence=int(round_half_up(_mean(s.tone_assessment.confidence for s in segments))),
        avg_energy=int(round_half_up(_mean(s.tone_assessment.energy for s in segments))),
        avg_warmth=int(round_half_up(_mean(s.tone_assessment.warmth for s in segments))),
        avg_clarity=int(round_half_up(_mean(s.tone_assessment.clarity for s in segments))),
        total_interruptions=sum(segment.interruptions_detected for segment in segments),
    )

    coaching_tips: list[CoachingTip] = []
    for segment in segments:
        coaching_tips.extend(_segment_tips(segment))

    moments = [moment for segment in segments for moment in segment.notable_moments]
    top_strengths = [m.description for m in moments if m.assessment == "strength"][:3]
    top_improvements = [m.description for m in moments if m.assessment == "improvement"][:3]

    if not top_strengths:
        if metrics.avg_confidence >= 70:
            top_strengths.append("Maintained solid vocal confidence throughout analyzed segments")
        else:
            top_strengths.append("Showed willingness to engage in extended sales conversations")
    if not top_improvements:
        if filler_rate > 3:
            top_improvements.append("Reduce filler word usage to project more authority")
        else:
            top_improvements.append("Continue developing dynamic vocal delivery for maximum engagement")

    return MergedAnalysis(
        metrics=metrics,
        coaching_tips=coaching_tips,
        top_strengths=top_strengths,
        top_improvements=top_improvements,
    )


def wpm_score(avg_wpm: float) -> float:
    if avg_wpm < EXTREME_WPM_LOW:
        return max(0.0, 100 - (EXTREME_WPM_LOW - avg_wpm) * 2)
    if avg_wpm < IDEAL_WPM_LOW:
        return 100 - (IDEAL_WPM_LOW - avg_wpm) * 1.5
    if avg_wpm > EXTREME_WPM_HIGH:
        return max(0.0, 100 - (avg_wpm - EXTREME_WPM_HIGH) * 2)
    if avg_wpm > IDEAL_WPM_HIGH:
        return 100 - (avg_wpm - IDEAL_WPM_HIGH) * 1.5
    return 100.0


def filler_score(filler_words_per_minute: float) -> float:
    if filler_words_per_minute <= FILLER_RATE_FREE_PER_MIN:
        return 100.0
    return max(0.0, 100 - (filler_words_per_minute - FILLER_RATE_FREE_PER_MIN) * 12)


def interruption_score(total_interruptions: int) -> float:
    return max(0.0, 100.0 - total_interruptions * 15)


def silence_score(segments: list[SegmentAnalysis]) -> float:
    pauses = sum(s.silence_handling.appropriate_pauses for s in segments)
    rushed = sum(s.silence_handling.rushed_responses for s in segments)
    if pauses + rushed == 0:
        return float(DEFAULT_SILENCE_SCORE)
    return round_half_up(pauses / (pauses + rushed) * 100)


def compute_component_scores(metrics: VoiceMetrics, segments: list[SegmentAnalysis]) -> dict[str, float]:
    tone = (metrics.avg_confidence + metrics.avg_energy + metrics.avg_warmth + metrics.avg_clarity) / 4
    return {
        "tone": tone,
        "wpm": wpm_score(metrics.avg_wpm),
        "filler": filler_score(metrics.filler_words_per_minute),
        "interruption": interruption_score(metrics.total_interruptions),
        "silence": silence_score(segments),
    }


def compute_composite_score(component_scores: dict[str, float]) -> float:
    return sum(component_scores[name] * weight for name, weight in SCORE_WEIGHTS.items())


def grade_for_score(composite_score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if composite_score >= threshold:
            return grade
    return "F"


def calculate_overall_grade(metrics: VoiceMetrics, segments: list[SegmentAnalysis]) -> tuple[str, float]:
    composite = compute_composite_score(compute_component_scores(metrics, segments))
    return grade_for_score(composite), round(composite, 1)
