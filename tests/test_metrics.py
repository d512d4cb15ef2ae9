import pytest

from app.voice_coach.metrics import (
    NoSegmentsAnalyzedError,
    calculate_overall_grade,
    compute_component_scores,
    compute_composite_score,
    filler_score,
    grade_for_score,
    infer_category,
    interruption_score,
    merge_segment_analyses,
    round_half_up,
    silence_score,
    wpm_score,
)
from app.voice_coach.models import VoiceMetrics


def _metrics(**overrides) -> VoiceMetrics:
    values = dict(
        avg_wpm=145,
        total_filler_words=9,
        filler_words_per_minute=1.5,
        avg_confidence=82,
        avg_energy=82,
        avg_warmth=82,
        avg_clarity=82,
        total_interruptions=0,
    )
    values.update(overrides)
    return VoiceMetrics(**values)


def test_grade_example_follows_weighted_formula(segment_factory):
    segments = [segment_factory(pauses=9, rushed=1)]

    scores = compute_component_scores(_metrics(), segments)
    assert scores == {"tone": 82, "wpm": 100, "filler": 100, "interruption": 100, "silence": 90}

    grade, composite = calculate_overall_grade(_metrics(), segments)
    assert composite == pytest.approx(91.8)
    assert grade == "A"


def test_composite_is_pure_function_of_component_scores():
    scores = {"tone": 70, "wpm": 80, "filler": 60, "interruption": 100, "silence": 50}
    assert compute_composite_score(scores) == pytest.approx(0.4 * 70 + 0.2 * 80 + 0.2 * 60 + 10 + 5)


@pytest.mark.parametrize(
    "score, grade",
    [
        (100, "A+"),
        (95, "A+"),
        (94.9, "A"),
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
        (56.9, "F"),
        (0, "F"),
    ],
)
def test_grade_thresholds(score, grade):
    assert grade_for_score(score) == grade


@pytest.mark.parametrize(
    "wpm, expected",
    [(145, 100), (130, 100), (160, 100), (120, 85), (90, 80), (40, 0), (175, 77.5), (200, 80), (300, 0)],
)
def test_wpm_score(wpm, expected):
    assert wpm_score(wpm) == pytest.approx(expected)


def test_filler_interruption_and_silence_scores(segment_factory):
    assert filler_score(2.0) == 100
    assert filler_score(5.0) == pytest.approx(64)
    assert filler_score(20) == 0
    assert interruption_score(3) == 55
    assert interruption_score(10) == 0
    assert silence_score([segment_factory()]) == 75
    assert silence_score([segment_factory(pauses=1, rushed=2)]) == 33


def test_merge_requires_at_least_one_segment():
    with pytest.raises(NoSegmentsAnalyzedError):
        merge_segment_analyses([])


def test_merge_single_segment(segment_factory):
    merged = merge_segment_analyses([segment_factory(wpm=150, fillers=6, tone=(80, 70, 60, 90))])

    assert merged.metrics.avg_wpm == 150
    assert merged.metrics.total_filler_words == 6
    assert merged.metrics.filler_words_per_minute == 2.0
    assert merged.metrics.avg_confidence == 80
    assert merged.metrics.avg_clarity == 90
    assert merged.top_strengths == ["Maintained solid vocal confidence throughout analyzed segments"]
    assert merged.top_improvements == ["Continue developing dynamic vocal delivery for maximum engagement"]


def test_merge_rounds_half_up_and_spreads_fillers(segment_factory):
    merged = merge_segment_analyses(
        [
            segment_factory("opener", wpm=142, fillers=5, interruptions=1),
            segment_factory("close", wpm=143, fillers=4, interruptions=2),
        ]
    )

    assert merged.metrics.avg_wpm == 143
    assert merged.metrics.filler_words_per_minute == 1.5
    assert merged.metrics.total_interruptions == 3


def test_merge_fallback_lists_for_low_confidence_and_high_fillers(segment_factory):
    merged = merge_segment_analyses([segment_factory(fillers=12, tone=(60, 60, 60, 60))])

    assert merged.top_strengths == ["Showed willingness to engage in extended sales conversations"]
    assert merged.top_improvements == ["Reduce filler word usage to project more authority"]


def test_merge_collects_moments_and_tips(segment_factory):
    moments = [
        {"description": "Confident tone in greeting", "assessment": "strength", "coaching_tip": "Keep it"},
        {"description": "Spoke too fast during pricing", "assessment": "improvement", "coaching_tip": "Slow down"},
    ]
    segment = segment_factory("key_moment", moments=moments, filler_rate=5.0, rushed=3)
    segment.pace_assessment.overall = "too_fast"
    segment.pace_assessment.recommendation = "Breathe between points"

    merged = merge_segment_analyses([segment])

    assert merged.top_strengths == ["Confident tone in greeting"]
    assert merged.top_improvements == ["Spoke too fast during pricing"]
    tips = [(tip.category, tip.severity, tip.title) for tip in merged.coaching_tips]
    assert tips == [
        ("tone", "positive", "Confident tone in greeting"),
        ("pace", "improvement", "Spoke too fast during pricing"),
        ("pace", "improvement", "Pace too fast in key_moment"),
        ("filler", "improvement", "High filler word usage in key_moment"),
        ("silence", "improvement", "Rushed responses in key_moment"),
    ]
    assert all(tip.segment == "key_moment" for tip in merged.coaching_tips)


def test_top_lists_are_capped_at_three(segment_factory):
    moments = [{"description": f"Strong point {i}", "assessment": "strength"} for i in range(5)]
    merged = merge_segment_analyses([segment_factory(moments=moments)])
    assert len(merged.top_strengths) == 3


def test_infer_category_defaults_to_engagement():
    assert infer_category("Asked great discovery questions") == "engagement"
    assert infer_category("Long silence after the question") == "silence"


def test_round_half_up():
    assert round_half_up(142.5) == 143
    assert round_half_up(1.25, 1) == 1.3
