#!/usr/bin/env python3
import argparse
import json
import os
import sys
from pathlib import Path

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.voice_coach.signing import get_signing_secret, sign_request


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a signed voice-analysis request.")
    parser.add_argument("--transcript-id", required=True)
    parser.add_argument("--audio-path", required=True, help="Object path inside the audio bucket.")
    parser.add_argument("--transcript-file", required=True, type=Path)
    parser.add_argument("--pipeline", choices=["full_cycle", "sdr"], default="full_cycle")
    parser.add_argument("--call-id")
    parser.add_argument(
        "--url",
        default=os.getenv("VOICE_API_URL", "http://localhost:8000").strip() or "http://localhost:8000",
    )
    args = parser.parse_args()

    payload = {
        "transcriptId": args.transcript_id,
        "audioPath": args.audio_path,
        "pipeline": args.pipeline,
        "transcriptText": args.transcript_file.read_text(encoding="utf-8"),
    }
    if args.call_id:
        payload["callId"] = args.call_id

    body = json.dumps(payload)
    headers = {"Content-Type": "application/json", **sign_request(body, get_signing_secret())}

    response = httpx.post(args.url.rstrip("/") + "/api/voice-analysis", content=body, headers=headers, timeout=30)
    print(f"HTTP {response.status_code}")
    print(response.text)
    if response.status_code != 202:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
