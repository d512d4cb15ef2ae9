from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Pipeline = Literal["full_cycle", "sdr"]
SegmentLabel = Literal["opener", "key_moment", "close"]


@dataclass
class VoiceAnalysisRequest:
    transcript_id: str
    audio_path: str
    pipeline: Pipeline
    transcript_text: str
    call_id: Optional[str] = None


@dataclass
class SegmentPlan:
    label: SegmentLabel
    start_seconds: float
    end_seconds: float
    start_byte: int
    end_byte: int
    context: str = ""


@dataclass
class QuotaDecision:
    allowed: bool
    current_usage: Optional[int] = None
    limit: Optional[int] = None
    scope: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class OwnerInfo:
    owner_id: Optional[str] = None
    team_id: Optional[str] = None


class AnalyzeVoiceAccepted(BaseModel):
    status: str
    message: str
    transcriptId: str
    pipeline: Pipeline


class FillerWords(BaseModel):
    count: int = 0
    examples: List[str] = Field(default_factory=list)
    per_minute: float = 0.0


class ToneAssessment(BaseModel):
    confidence: float = 50
    energy: float = 50
    warmth: float = 50
    clarity: float = 50


class PaceAssessment(BaseModel):
    overall: Literal["too_slow", "good", "too_fast"] = "good"
    variability: Literal["monotone", "some_variation", "dynamic"] = "some_variation"
    recommendation: str = ""


class NotableMoment(BaseModel):
    description: str
    assessment: Literal["strength", "improvement"]
    coaching_tip: str = ""


class SilenceHandling(BaseModel):
    appropriate_pauses: int = 0
    rushed_responses: int = 0
    assessment: str = ""


class SegmentAnalysis(BaseModel):
    segment_label: str
    estimated_wpm: float = 0
    filler_words: FillerWords = Field(default_factory=FillerWords)
    tone_assessment: ToneAssessment = Field(default_factory=ToneAssessment)
    pace_assessment: PaceAssessment = Field(default_factory=PaceAssessment)
    notable_moments: List[NotableMoment] = Field(default_factory=list)
    interruptions_detected: int = 0
    silence_handling: SilenceHandling = Field(default_factory=SilenceHandling)


class VoiceMetrics(BaseModel):
    avg_wpm: int
    total_filler_words: int
    filler_words_per_minute: float
    avg_confidence: int
    avg_energy: int
    avg_warmth: int
    avg_clarity: int
    total_interruptions: int


class CoachingTip(BaseModel):
    category: Literal["pace", "filler", "energy", "silence", "tone", "engagement"]
    severity: Literal["positive", "neutral", "improvement"]
    title: str
    description: str
    segment: str


class VoiceAnalysisResult(BaseModel):
    analyzed_at: str
    segments_analyzed: int
    total_duration_analyzed_seconds: float
    overall_voice_grade: str
    composite_score: float
    voice_summary: str
    top_strengths: List[str]
    top_improvements: List[str]
    metrics: VoiceMetrics
    segment_analyses: List[SegmentAnalysis]
    coaching_tips: List[CoachingTip]


@dataclass
class MergedAnalysis:
    metrics: VoiceMetrics
    coaching_tips: List[CoachingTip] = field(default_factory=list)
    top_strengths: List[str] = field(default_factory=list)
    top_improvements: List[str] = field(default_factory=list)
