import base64
import json
import os
from functools import lru_cache
from typing import Optional, Tuple

from google.oauth2 import service_account


# Recordings are only ever read.
STORAGE_READ_SCOPE = "https://www.googleapis.com/auth/devstorage.read_only"

ENV_B64 = "GOOGLE_APPLICATION_CREDENTIALS_B64"
ENV_JSON = "GOOGLE_APPLICATION_CREDENTIALS_JSON"
ENV_PATH = "GOOGLE_APPLICATION_CREDENTIALS"


def _load_json_object(raw_json: str, source: str) -> dict:
    try:
        parsed = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"{source} does not contain valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise RuntimeError(f"{source} must contain a JSON object.")
    return parsed


def _decode_b64_service_account(encoded: str) -> dict:
    normalized = encoded.strip()
    normalized += "=" * ((-len(normalized)) % 4)
    try:
        raw = base64.b64decode(normalized).decode("utf-8")
    except Exception as exc:
        raise RuntimeError(f"{ENV_B64} is not valid base64-encoded UTF-8.") from exc
    return _load_json_object(raw, ENV_B64)


def credential_source() -> Tuple[str, str]:
    """Return (env var name, value) of the first configured credential source,
    or ("", "") when Application Default Credentials should be used."""
    for name in (ENV_B64, ENV_JSON, ENV_PATH):
        value = os.getenv(name, "").strip()
        if value:
            return name, value
    return "", ""


@lru_cache(maxsize=1)
def get_gcp_credentials() -> Optional[service_account.Credentials]:
    source, value = credential_source()
    if source == ENV_B64:
        info = _decode_b64_service_account(value)
    elif source == ENV_JSON:
        info = _load_json_object(value, ENV_JSON)
    elif source == ENV_PATH:
        if not os.path.exists(value):
            raise RuntimeError(f"{ENV_PATH} points to a missing file: {value}")
        return service_account.Credentials.from_service_account_file(value, scopes=[STORAGE_READ_SCOPE])
    else:
        return None
    return service_account.Credentials.from_service_account_info(info, scopes=[STORAGE_READ_SCOPE])


def get_project_id_hint() -> Optional[str]:
    explicit = os.getenv("GCP_PROJECT_ID", "").strip()
    if explicit:
        return explicit
    creds = get_gcp_credentials()
    return getattr(creds, "project_id", None) if creds is not None else None
