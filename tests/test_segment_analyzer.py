import base64
import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APITimeoutError, AuthenticationError

from app.voice_coach import llm_client
from app.voice_coach.models import SegmentPlan
from app.voice_coach.segment_analyzer import (
    SegmentAnalysisError,
    _parse_json_with_repair,
    analyze_segment,
    normalize_segment_analysis,
)


MODEL_JSON = {
    "estimated_wpm": 152,
    "filler_words": {"count": 4, "examples": ["um", "like"], "per_minute": 1.3},
    "tone_assessment": {"confidence": 78, "energy": 65, "warmth": 80, "clarity": 85},
    "pace_assessment": {"overall": "good", "variability": "dynamic", "recommendation": "Keep it up"},
    "notable_moments": [
        {"description": "Clear agenda", "assessment": "strength", "coaching_tip": "Repeat it"},
    ],
    "interruptions_detected": 1,
    "silence_handling": {"appropriate_pauses": 3, "rushed_responses": 1, "assessment": "Mostly calm"},
}


def _plan(label="opener") -> SegmentPlan:
    return SegmentPlan(label=label, start_seconds=0, end_seconds=180, start_byte=0, end_byte=10, context="ctx")


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_normalize_missing_payload_gives_neutral_analysis():
    analysis = normalize_segment_analysis(None, "close")

    assert analysis.segment_label == "close"
    assert analysis.estimated_wpm == 0
    assert analysis.filler_words.count == 0
    assert analysis.tone_assessment.confidence == 50
    assert analysis.tone_assessment.clarity == 50
    assert analysis.pace_assessment.overall == "good"
    assert analysis.pace_assessment.variability == "some_variation"
    assert analysis.notable_moments == []
    assert analysis.silence_handling.appropriate_pauses == 0


def test_normalize_repairs_malformed_fields():
    raw = {
        "estimated_wpm": "fast",
        "filler_words": {"count": 3.7, "examples": ["um", " ", 3]},
        "tone_assessment": {"confidence": 140, "energy": -5, "warmth": "abc", "clarity": True},
        "pace_assessment": {"overall": "weird", "variability": "MONOTONE"},
        "notable_moments": [
            {"description": "", "assessment": "strength"},
            {"description": "Rushed the close", "assessment": "bad"},
            "not a moment",
        ],
        "interruptions_detected": -2,
        "silence_handling": "none",
    }

    analysis = normalize_segment_analysis(raw, "opener")

    assert analysis.estimated_wpm == 0
    assert analysis.filler_words.count == 3
    assert analysis.filler_words.examples == ["um", "3"]
    assert analysis.tone_assessment.confidence == 100
    assert analysis.tone_assessment.energy == 0
    assert analysis.tone_assessment.warmth == 50
    assert analysis.tone_assessment.clarity == 50
    assert analysis.pace_assessment.overall == "good"
    assert analysis.pace_assessment.variability == "monotone"
    assert [(m.description, m.assessment) for m in analysis.notable_moments] == [("Rushed the close", "improvement")]
    assert analysis.interruptions_detected == 0
    assert analysis.silence_handling.rushed_responses == 0


def test_parse_json_with_repair_extracts_object():
    assert _parse_json_with_repair('Sure! {"estimated_wpm": 150} Hope this helps.', "opener") == {"estimated_wpm": 150}


@pytest.mark.parametrize("raw", ["no json at all", "[1, 2, 3]", "{broken: json}"])
def test_parse_json_with_repair_rejects_garbage(raw):
    with pytest.raises(SegmentAnalysisError):
        _parse_json_with_repair(raw, "opener")


def test_analyze_segment_sends_base64_audio_and_normalizes():
    with patch(
        "app.voice_coach.segment_analyzer.request_audio_analysis",
        return_value=json.dumps(MODEL_JSON),
    ) as mock_request:
        analysis = analyze_segment(b"audio-bytes", _plan("key_moment"), 1, 3, "mp3")

    kwargs = mock_request.call_args.kwargs
    assert base64.b64decode(kwargs["audio_base64"]) == b"audio-bytes"
    assert kwargs["audio_format"] == "mp3"
    assert "segment 2 of 3" in kwargs["user_text"]
    assert analysis.segment_label == "key_moment"
    assert analysis.estimated_wpm == 152
    assert analysis.tone_assessment.clarity == 85
    assert analysis.notable_moments[0].coaching_tip == "Repeat it"


def test_analyze_segment_wraps_model_failure():
    with patch(
        "app.voice_coach.segment_analyzer.request_audio_analysis",
        side_effect=RuntimeError("Audio model request failed after 3 attempt(s): boom"),
    ):
        with pytest.raises(SegmentAnalysisError, match="Segment opener failed"):
            analyze_segment(b"x", _plan(), 0, 1, "wav")


def test_request_audio_analysis_retries_transient_errors(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    client = MagicMock()
    client.chat.completions.create.side_effect = [
        APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")),
        _completion('{"estimated_wpm": 140}'),
    ]

    with patch.object(llm_client, "_build_client", return_value=client), patch.object(
        llm_client._create_completion.retry, "sleep"
    ) as mock_sleep:
        content = llm_client.request_audio_analysis(
            system_prompt="sys",
            user_text="user",
            audio_base64="AAAA",
            audio_format="mp3",
        )

    assert content == '{"estimated_wpm": 140}'
    assert client.chat.completions.create.call_count == 2
    mock_sleep.assert_called_once_with(5.0)
    sent = client.chat.completions.create.call_args.kwargs
    assert sent["response_format"] == {"type": "json_object"}
    assert sent["temperature"] == 0.3
    assert sent["max_tokens"] == 4096
    assert sent["messages"][1]["content"][0]["input_audio"] == {"data": "AAAA", "format": "mp3"}


def test_request_audio_analysis_gives_up_after_max_attempts():
    client = MagicMock()
    timeout = APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    client.chat.completions.create.side_effect = [timeout, timeout, timeout]

    with patch.object(llm_client, "_build_client", return_value=client), patch.object(
        llm_client._create_completion.retry, "sleep"
    ) as mock_sleep:
        with pytest.raises(RuntimeError, match="after 3 attempt"):
            llm_client.request_audio_analysis(
                system_prompt="sys", user_text="user", audio_base64="AAAA", audio_format="mp3"
            )

    assert [c.args[0] for c in mock_sleep.call_args_list] == [5.0, 10.0]


def test_request_audio_analysis_does_not_retry_auth_errors():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = AuthenticationError("bad key", response=httpx.Response(401, request=request), body=None)
    client = MagicMock()
    client.chat.completions.create.side_effect = error

    with patch.object(llm_client, "_build_client", return_value=client), patch.object(
        llm_client._create_completion.retry, "sleep"
    ) as mock_sleep:
        with pytest.raises(RuntimeError):
            llm_client.request_audio_analysis(
                system_prompt="sys", user_text="user", audio_base64="AAAA", audio_format="mp3"
            )

    assert client.chat.completions.create.call_count == 1
    mock_sleep.assert_not_called()


def test_request_audio_analysis_rejects_empty_content():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion("")

    with patch.object(llm_client, "_build_client", return_value=client):
        with pytest.raises(RuntimeError, match="empty"):
            llm_client.request_audio_analysis(
                system_prompt="sys", user_text="user", audio_base64="AAAA", audio_format="mp3"
            )
