import logging

from .llm_text import request_chat_completion
from .models import SegmentAnalysis, VoiceMetrics
from .prompts.voice_coach import SUMMARY_SYSTEM_PROMPT, SUMMARY_USER_PROMPT_TEMPLATE


logger = logging.getLogger("uvicorn.error")


def build_summary_user_prompt(metrics: VoiceMetrics, grade: str, segments: list[SegmentAnalysis]) -> str:
    moment_lines = [
        f"- [{segment.segment_label}] {moment.assessment}: {moment.description}"
        for segment in segments
        for moment in segment.notable_moments
    ]
    return SUMMARY_USER_PROMPT_TEMPLATE.format(
        grade=grade,
        avg_wpm=metrics.avg_wpm,
        filler_words_per_minute=f"{metrics.filler_words_per_minute:.1f}",
        avg_confidence=metrics.avg_confidence,
        avg_energy=metrics.avg_energy,
        avg_warmth=metrics.avg_warmth,
        avg_clarity=metrics.avg_clarity,
        total_interruptions=metrics.total_interruptions,
        segment_labels=", ".join(segment.segment_label for segment in segments),
        notable_moments="\n".join(moment_lines) or "- none recorded",
    )


def build_fallback_summary(metrics: VoiceMetrics) -> str:
    if 130 <= metrics.avg_wpm <= 160:
        pace = "a well-paced delivery"
    elif metrics.avg_wpm > 160:
        pace = "a fast-paced delivery that could benefit from slowing down"
    else:
        pace = "a slower pace that could use more energy"

    if metrics.filler_words_per_minute > 4:
        filler_sentence = "Reducing filler word usage would significantly improve perceived authority."
    else:
        filler_sentence = "Filler word usage was within acceptable range."

    return (
        f"This call showed {pace} at {round(metrics.avg_wpm)} WPM with an average confidence "
        f"level of {round(metrics.avg_confidence)}/100. {filler_sentence}"
    )


def generate_voice_summary(metrics: VoiceMetrics, grade: str, segments: list[SegmentAnalysis]) -> str:
    try:
        content = request_chat_completion(
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            user_prompt=build_summary_user_prompt(metrics, grade, segments),
            temperature=0.5,
            max_tokens=300,
        )
        return content.strip()
    except Exception as exc:
        logger.warning("voice_summary_fallback error=%s", exc)
    return build_fallback_summary(metrics)
