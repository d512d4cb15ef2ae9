import json
import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.voice_coach import web
from app.voice_coach.signing import sign_request

from conftest import CALL_ID, TRANSCRIPT_ID


SECRET = os.environ["VOICE_SIGNING_SECRET"]


@pytest.fixture
def client():
    return TestClient(web.app)


def _payload(**overrides):
    payload = {
        "transcriptId": TRANSCRIPT_ID,
        "callId": CALL_ID,
        "audioPath": "calls/rep/call.mp3",
        "pipeline": "sdr",
        "transcriptText": "[00:05] Rep: Hi there",
    }
    payload.update(overrides)
    return payload


def _post(client, body: str, headers=None):
    signed = {"Content-Type": "application/json", **sign_request(body, SECRET)}
    if headers is not None:
        signed = headers
    return client.post("/api/voice-analysis", content=body, headers=signed)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": "memory"}


def test_accepts_signed_request_and_starts_background_run(client):
    with patch.object(web, "start_voice_analysis") as mock_start:
        response = _post(client, json.dumps(_payload()))

    assert response.status_code == 202
    assert response.json() == {
        "status": "analyzing_voice",
        "message": "Voice analysis started in background",
        "transcriptId": TRANSCRIPT_ID,
        "pipeline": "sdr",
    }
    voice_request, deps = mock_start.call_args.args
    assert voice_request.transcript_id == TRANSCRIPT_ID
    assert voice_request.call_id == CALL_ID
    assert voice_request.pipeline == "sdr"
    assert deps is web.voice_deps


def test_missing_signature_is_forbidden(client):
    with patch.object(web, "start_voice_analysis") as mock_start:
        response = _post(client, json.dumps(_payload()), headers={"Content-Type": "application/json"})

    assert response.status_code == 403
    assert "Missing signature headers" in response.json()["detail"]
    mock_start.assert_not_called()


def test_signature_over_different_body_is_forbidden(client):
    body = json.dumps(_payload())
    headers = {"Content-Type": "application/json", **sign_request(body, SECRET)}

    with patch.object(web, "start_voice_analysis") as mock_start:
        response = client.post("/api/voice-analysis", content=body.replace("sdr", "full_cycle"), headers=headers)

    assert response.status_code == 403
    mock_start.assert_not_called()


def test_malformed_json_is_bad_request(client):
    response = _post(client, "{not json")
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid JSON body"


@pytest.mark.parametrize(
    "overrides, detail",
    [
        ({"transcriptId": "not-a-uuid"}, "Invalid or missing transcriptId"),
        ({"transcriptId": None}, "Invalid or missing transcriptId"),
        ({"audioPath": ""}, "Invalid or missing audioPath"),
        ({"audioPath": 42}, "Invalid or missing audioPath"),
        ({"pipeline": "inbound"}, 'Invalid pipeline. Must be "full_cycle" or "sdr"'),
        ({"transcriptText": "   "}, "Invalid or missing transcriptText"),
        ({"callId": "abc"}, "Invalid callId format"),
    ],
)
def test_invalid_fields_are_bad_request(client, overrides, detail):
    with patch.object(web, "start_voice_analysis") as mock_start:
        response = _post(client, json.dumps(_payload(**overrides)))

    assert response.status_code == 400
    assert response.json()["detail"] == detail
    mock_start.assert_not_called()


def test_call_id_is_optional(client):
    payload = _payload(pipeline="full_cycle")
    payload.pop("callId")

    with patch.object(web, "start_voice_analysis") as mock_start:
        response = _post(client, json.dumps(payload))

    assert response.status_code == 202
    assert mock_start.call_args.args[0].call_id is None


def test_missing_signing_secret_is_server_error(client, monkeypatch):
    monkeypatch.delenv("VOICE_SIGNING_SECRET", raising=False)

    response = _post(client, json.dumps(_payload()))

    assert response.status_code == 500


def test_read_voice_analysis(client):
    web.voice_deps.record_store.upsert_voice_analysis(
        "sdr_call_grades",
        {"call_id": CALL_ID, "audio_voice_analysis": {"overall_voice_grade": "B"}},
    )

    response = client.get(f"/api/voice-analysis/sdr/{CALL_ID}")
    assert response.status_code == 200
    assert response.json() == {"overall_voice_grade": "B"}

    assert client.get(f"/api/voice-analysis/full_cycle/{CALL_ID}").status_code == 404
    assert client.get(f"/api/voice-analysis/inbound/{CALL_ID}").status_code == 404
    assert client.get("/api/voice-analysis/sdr/not-a-uuid").status_code == 400
