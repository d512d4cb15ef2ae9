import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .constants import MAX_DOWNLOAD_BYTES, MAX_ERROR_CHARS, MIN_DURATION_FOR_SEGMENTATION
from .gcs_utils import download_blob_bytes, get_blob_size
from .metrics import NoSegmentsAnalyzedError, calculate_overall_grade, merge_segment_analyses
from .models import (
    QuotaDecision,
    SegmentAnalysis,
    SegmentPlan,
    VoiceAnalysisRequest,
    VoiceAnalysisResult,
    utc_now,
)
from .prompts.voice_coach import VOICE_COACH_VERSION
from .quota import QuotaStore, build_quota_store, check_usage_quota, reserve_usage
from .segment_analyzer import analyze_segment
from .segmentation import audio_format_for_path, plan_segments
from .storage import RecordStore, build_record_store, emit_metric, store_voice_analysis
from .summarization import generate_voice_summary
from .transcript_timing import (
    estimate_duration_from_size,
    estimate_duration_from_transcript,
    find_key_moment_timestamp,
    format_timestamp,
)


logger = logging.getLogger("uvicorn.error")

METRIC_QUOTA_EXCEEDED = "voice_analysis.quota_exceeded"
METRIC_TOTAL = "voice_analysis.total"


class AudioTooLargeError(RuntimeError):
    pass


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def get_max_download_bytes() -> int:
    raw = os.getenv("VOICE_MAX_DOWNLOAD_BYTES", "").strip()
    if not raw:
        return MAX_DOWNLOAD_BYTES
    try:
        value = int(raw)
    except ValueError:
        logger.warning("invalid VOICE_MAX_DOWNLOAD_BYTES=%r using_default=%s", raw, MAX_DOWNLOAD_BYTES)
        return MAX_DOWNLOAD_BYTES
    return value if value > 0 else MAX_DOWNLOAD_BYTES


@dataclass
class VoiceAnalysisDeps:
    record_store: RecordStore
    quota_store: QuotaStore
    get_audio_size: Callable[[str], Optional[int]] = get_blob_size
    download_audio: Callable[[str], bytes] = download_blob_bytes
    analyze_segment: Callable[..., SegmentAnalysis] = analyze_segment
    generate_summary: Callable[..., str] = generate_voice_summary
    clock: Callable[[], float] = time.perf_counter
    now: Callable[[], datetime] = utc_now
    max_download_bytes: int = field(default_factory=get_max_download_bytes)


def build_default_deps() -> VoiceAnalysisDeps:
    return VoiceAnalysisDeps(record_store=build_record_store(), quota_store=build_quota_store())


def resolve_duration_seconds(
    record_store: RecordStore,
    request: VoiceAnalysisRequest,
    audio_size: int,
    audio_format: str,
) -> float:
    """Declared duration first, then the transcript's last timestamp, then
    an estimate from the file size."""
    try:
        declared = record_store.get_declared_duration(request.pipeline, request.transcript_id)
    except Exception as exc:
        logger.warning("transcript_id=%s declared_duration_lookup_failed error=%s", request.transcript_id, exc)
        declared = None
    if declared and declared > 0:
        return float(declared)

    from_transcript = estimate_duration_from_transcript(request.transcript_text)
    if from_transcript > 0:
        return float(from_transcript)

    from_size = estimate_duration_from_size(audio_size, audio_format)
    logger.warning(
        "transcript_id=%s duration_estimated_from_size seconds=%s format=%s",
        request.transcript_id,
        from_size,
        audio_format,
    )
    return float(from_size)


def _quota_exceeded(
    deps: VoiceAnalysisDeps,
    request: VoiceAnalysisRequest,
    owner_id: str,
    decision: QuotaDecision,
    elapsed_ms: float,
) -> None:
    logger.info(
        "transcript_id=%s voice_analysis_skipped reason=%s",
        request.transcript_id,
        decision.reason,
    )
    emit_metric(
        deps.record_store,
        METRIC_QUOTA_EXCEEDED,
        elapsed_ms,
        "success",
        {
            "pipeline": request.pipeline,
            "transcriptId": request.transcript_id,
            "ownerId": owner_id,
            "currentUsage": decision.current_usage,
            "limit": decision.limit,
            "scope": decision.scope,
            "reason": decision.reason,
        },
    )


def _analyze_planned_segments(
    deps: VoiceAnalysisDeps,
    request: VoiceAnalysisRequest,
    audio: bytes,
    plans: list[SegmentPlan],
    audio_format: str,
) -> list[tuple[SegmentPlan, SegmentAnalysis]]:
    completed: list[tuple[SegmentPlan, SegmentAnalysis]] = []
    # Sequential on purpose: only one encoded segment is held in memory at a time.
    for index, plan in enumerate(plans):
        try:
            analysis = deps.analyze_segment(
                audio[plan.start_byte : plan.end_byte],
                plan,
                index,
                len(plans),
                audio_format,
            )
        except Exception as exc:
            logger.error(
                "transcript_id=%s voice_segment_failed label=%s error=%s",
                request.transcript_id,
                plan.label,
                _truncate(str(exc)),
            )
            continue
        completed.append((plan, analysis))
    return completed


def run_voice_analysis(request: VoiceAnalysisRequest, deps: VoiceAnalysisDeps) -> Optional[VoiceAnalysisResult]:
    """Run one voice analysis end to end.

    Never raises: failures are logged and reported as an error metric.
    Returns the stored result, or None when the run was skipped or failed.
    """
    started = deps.clock()

    def elapsed_ms() -> float:
        return (deps.clock() - started) * 1000

    base_metadata = {
        "pipeline": request.pipeline,
        "transcriptId": request.transcript_id,
        "callId": request.call_id,
    }

    try:
        owner = deps.record_store.lookup_owner(request.pipeline, request.transcript_id, request.call_id)

        if owner.owner_id:
            decision = check_usage_quota(deps.quota_store, owner.owner_id, owner.team_id)
            if not decision.allowed:
                _quota_exceeded(deps, request, owner.owner_id, decision, elapsed_ms())
                return None
            if not reserve_usage(deps.quota_store, owner.owner_id, decision.limit):
                decision.reason = f"Monthly voice analysis limit reached ({decision.limit}/{decision.limit})"
                decision.current_usage = decision.limit
                _quota_exceeded(deps, request, owner.owner_id, decision, elapsed_ms())
                return None
        else:
            logger.warning(
                "transcript_id=%s owner_not_resolved proceeding_without_quota pipeline=%s",
                request.transcript_id,
                request.pipeline,
            )

        max_bytes = deps.max_download_bytes
        listed_size = deps.get_audio_size(request.audio_path)
        if listed_size is None:
            logger.warning("transcript_id=%s audio_size_unknown path=%s", request.transcript_id, request.audio_path)
        elif listed_size > max_bytes:
            raise AudioTooLargeError(
                f"Audio file too large for processing ({listed_size / 1024 / 1024:.1f}MB, "
                f"max {max_bytes / 1024 / 1024:.0f}MB). Please upload a smaller file or use a compressed format."
            )

        audio = deps.download_audio(request.audio_path)
        if not audio:
            raise RuntimeError(f"Failed to download audio: no data returned for {request.audio_path}")
        if len(audio) > max_bytes:
            raise AudioTooLargeError(
                f"Audio file too large for processing ({len(audio) / 1024 / 1024:.1f}MB, "
                f"max {max_bytes / 1024 / 1024:.0f}MB)."
            )
        audio_size_mb = round(len(audio) / 1024 / 1024, 2)
        logger.info("transcript_id=%s audio_downloaded size_mb=%.1f", request.transcript_id, audio_size_mb)

        _, _, audio_format = audio_format_for_path(request.audio_path)
        duration_seconds = resolve_duration_seconds(deps.record_store, request, len(audio), audio_format)

        key_moment = None
        if duration_seconds >= MIN_DURATION_FOR_SEGMENTATION:
            key_moment = find_key_moment_timestamp(request.transcript_text, duration_seconds)
            if key_moment is not None:
                logger.info(
                    "transcript_id=%s key_moment_found at=%s", request.transcript_id, format_timestamp(key_moment)
                )
            else:
                logger.info("transcript_id=%s key_moment_not_found using_midpoint", request.transcript_id)

        plans = plan_segments(len(audio), duration_seconds, key_moment)
        logger.info(
            "transcript_id=%s segments_planned duration_s=%s labels=%s",
            request.transcript_id,
            duration_seconds,
            ",".join(plan.label for plan in plans),
        )

        completed = _analyze_planned_segments(deps, request, audio, plans, audio_format)
        del audio
        if not completed:
            raise NoSegmentsAnalyzedError("All segment analyses failed; no voice analysis data produced.")
        logger.info("transcript_id=%s segments_completed=%s/%s", request.transcript_id, len(completed), len(plans))

        segment_analyses = [analysis for _, analysis in completed]
        merged = merge_segment_analyses(segment_analyses)
        grade, composite_score = calculate_overall_grade(merged.metrics, segment_analyses)
        summary = deps.generate_summary(merged.metrics, grade, segment_analyses)

        analyzed_seconds = sum(plan.end_seconds - plan.start_seconds for plan, _ in completed)
        result = VoiceAnalysisResult(
            analyzed_at=deps.now().isoformat(),
            segments_analyzed=len(segment_analyses),
            total_duration_analyzed_seconds=min(analyzed_seconds, duration_seconds),
            overall_voice_grade=grade,
            composite_score=composite_score,
            voice_summary=summary,
            top_strengths=merged.top_strengths,
            top_improvements=merged.top_improvements,
            metrics=merged.metrics,
            segment_analyses=segment_analyses,
            coaching_tips=merged.coaching_tips,
        )

        outcome = store_voice_analysis(
            deps.record_store,
            request.pipeline,
            request.transcript_id,
            request.call_id,
            owner.owner_id,
            result.model_dump(),
        )

        emit_metric(
            deps.record_store,
            METRIC_TOTAL,
            elapsed_ms(),
            "success",
            {
                **base_metadata,
                "audioSizeMB": audio_size_mb,
                "durationSeconds": duration_seconds,
                "segmentsAnalyzed": result.segments_analyzed,
                "overallGrade": grade,
                "compositeScore": composite_score,
                "avgWpm": result.metrics.avg_wpm,
                "totalFillerWords": result.metrics.total_filler_words,
                "avgConfidence": result.metrics.avg_confidence,
                "storage": outcome,
                "promptVersion": VOICE_COACH_VERSION,
            },
        )
        logger.info(
            "transcript_id=%s voice_analysis_complete grade=%s score=%s segments=%s storage=%s",
            request.transcript_id,
            grade,
            composite_score,
            result.segments_analyzed,
            outcome,
        )
        return result
    except Exception as exc:
        error = _truncate(str(exc))
        logger.error("transcript_id=%s voice_analysis_failed error=%s", request.transcript_id, error, exc_info=True)
        emit_metric(deps.record_store, METRIC_TOTAL, elapsed_ms(), "error", {**base_metadata, "error": error})
        return None


def start_voice_analysis(request: VoiceAnalysisRequest, deps: VoiceAnalysisDeps) -> threading.Thread:
    """Run the analysis in a daemon thread so the HTTP response is closed
    before the work begins."""
    worker = threading.Thread(
        target=run_voice_analysis,
        args=(request, deps),
        name=f"voice-analysis-{request.transcript_id}",
        daemon=True,
    )
    worker.start()
    return worker
