import json
import logging
import os
import re

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .constants import PIPELINES
from .models import AnalyzeVoiceAccepted, VoiceAnalysisRequest
from .pipeline import build_default_deps, start_voice_analysis
from .signing import get_signing_secret, validate_signed_request
from .storage import get_voice_analysis


logger = logging.getLogger("uvicorn.error")

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

app = FastAPI(title="Voice Coaching Analysis Backend")
voice_deps = build_default_deps()

frontend_origins = os.getenv(
    "FRONTEND_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _is_uuid(value: object) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def _is_non_empty_string(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def parse_voice_request(payload: object) -> VoiceAnalysisRequest:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    transcript_id = payload.get("transcriptId")
    call_id = payload.get("callId")
    audio_path = payload.get("audioPath")
    pipeline = payload.get("pipeline")
    transcript_text = payload.get("transcriptText")

    if not _is_uuid(transcript_id):
        raise HTTPException(status_code=400, detail="Invalid or missing transcriptId")
    if not _is_non_empty_string(audio_path):
        raise HTTPException(status_code=400, detail="Invalid or missing audioPath")
    if pipeline not in PIPELINES:
        raise HTTPException(status_code=400, detail='Invalid pipeline. Must be "full_cycle" or "sdr"')
    if not _is_non_empty_string(transcript_text):
        raise HTTPException(status_code=400, detail="Invalid or missing transcriptText")
    if call_id is not None and call_id != "" and not _is_uuid(call_id):
        raise HTTPException(status_code=400, detail="Invalid callId format")

    return VoiceAnalysisRequest(
        transcript_id=transcript_id,
        audio_path=audio_path.strip(),
        pipeline=pipeline,
        transcript_text=transcript_text,
        call_id=call_id or None,
    )


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "storage": voice_deps.record_store.storage_name,
    }


@app.post("/api/voice-analysis", status_code=202, response_model=AnalyzeVoiceAccepted)
async def create_voice_analysis(request: Request) -> AnalyzeVoiceAccepted:
    # The signature covers the raw body, so it is checked before parsing.
    raw_body = await request.body()
    try:
        body_text = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Failed to read request body")

    try:
        secret = get_signing_secret()
    except RuntimeError:
        logger.error("voice_analysis_rejected reason=missing_signing_secret")
        return JSONResponse(status_code=500, content={"detail": "Server configuration error"})

    valid, error = validate_signed_request(request.headers, body_text, secret)
    if not valid:
        logger.warning("voice_analysis_rejected reason=invalid_signature error=%s", error)
        raise HTTPException(status_code=403, detail=f"Invalid request signature: {error}")

    try:
        payload = json.loads(body_text)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    voice_request = parse_voice_request(payload)
    logger.info(
        "transcript_id=%s voice_analysis_accepted pipeline=%s audio_path=%s",
        voice_request.transcript_id,
        voice_request.pipeline,
        voice_request.audio_path,
    )
    start_voice_analysis(voice_request, voice_deps)

    return AnalyzeVoiceAccepted(
        status="analyzing_voice",
        message="Voice analysis started in background",
        transcriptId=voice_request.transcript_id,
        pipeline=voice_request.pipeline,
    )


@app.get("/api/voice-analysis/{pipeline}/{record_id}")
def read_voice_analysis(pipeline: str, record_id: str) -> dict:
    if pipeline not in PIPELINES:
        raise HTTPException(status_code=404, detail="Unknown pipeline.")
    if not _is_uuid(record_id):
        raise HTTPException(status_code=400, detail="Invalid record id.")

    analysis = get_voice_analysis(voice_deps.record_store, pipeline, record_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Voice analysis not found.")
    return analysis
