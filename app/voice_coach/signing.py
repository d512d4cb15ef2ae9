"""HMAC-SHA256 signing for service-to-service requests.

The signed payload is ``"{timestamp}.{nonce}.{body}"`` where the timestamp is
milliseconds since the epoch. Only the first 32 characters of the shared
secret are used as the key.
"""

import hashlib
import hmac
import os
import time
import uuid
from typing import Dict, Mapping, Optional, Tuple


SIGNATURE_HEADER = "X-Request-Signature"
TIMESTAMP_HEADER = "X-Request-Timestamp"
NONCE_HEADER = "X-Request-Nonce"

DEFAULT_MAX_AGE_MS = 5 * 60 * 1000
MAX_FUTURE_SKEW_MS = 60 * 1000
SECRET_KEY_CHARS = 32


def get_signing_secret() -> str:
    secret = os.getenv("VOICE_SIGNING_SECRET", "").strip()
    if not secret:
        raise RuntimeError("Missing VOICE_SIGNING_SECRET. Set it before accepting signed requests.")
    return secret


def _now_ms() -> int:
    return int(time.time() * 1000)


def compute_signature(payload: str, secret: str) -> str:
    key = secret[:SECRET_KEY_CHARS].encode("utf-8")
    return hmac.new(key, payload.encode("utf-8"), hashlib.sha256).hexdigest()


def sign_request(
    body: str,
    secret: str,
    now_ms: Optional[int] = None,
    nonce: Optional[str] = None,
) -> Dict[str, str]:
    timestamp = str(now_ms if now_ms is not None else _now_ms())
    nonce = nonce or str(uuid.uuid4())
    return {
        SIGNATURE_HEADER: compute_signature(f"{timestamp}.{nonce}.{body}", secret),
        TIMESTAMP_HEADER: timestamp,
        NONCE_HEADER: nonce,
    }


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == lowered), None)
    return (value or "").strip()


def validate_signed_request(
    headers: Mapping[str, str],
    body: str,
    secret: str,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    now_ms: Optional[int] = None,
) -> Tuple[bool, Optional[str]]:
    signature = _header(headers, SIGNATURE_HEADER)
    timestamp = _header(headers, TIMESTAMP_HEADER)
    nonce = _header(headers, NONCE_HEADER)

    if not signature or not timestamp or not nonce:
        return False, "Missing signature headers"

    try:
        request_time = int(timestamp)
    except ValueError:
        return False, "Invalid timestamp format"

    now = now_ms if now_ms is not None else _now_ms()
    if now - request_time > max_age_ms:
        return False, "Request expired"
    if request_time > now + MAX_FUTURE_SKEW_MS:
        return False, "Request timestamp in future"

    expected = compute_signature(f"{timestamp}.{nonce}.{body}", secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return False, "Invalid signature"
    return True, None
