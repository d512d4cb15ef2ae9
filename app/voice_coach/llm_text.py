import json
import logging
import os
from typing import Any, Dict, List

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import MAX_ERROR_CHARS


logger = logging.getLogger("uvicorn.error")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SUMMARY_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_ATTEMPTS = 2
BASE_DELAY_SECONDS = 2.0


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("Missing OPENAI_API_KEY. Set it before requesting a voice summary.")
    return api_key


def _base_url() -> str:
    return os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL


def _model_name() -> str:
    return os.getenv("VOICE_SUMMARY_MODEL", DEFAULT_SUMMARY_MODEL).strip() or DEFAULT_SUMMARY_MODEL


def _auth_headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {_get_api_key()}",
    }


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def _error_detail(response: httpx.Response) -> str:
    try:
        error_payload = response.json()
        detail = (
            error_payload.get("error", {}).get("message")
            if isinstance(error_payload, dict)
            else ""
        ) or ""
    except Exception:
        detail = response.text or ""
    return _truncate(detail or "Unknown provider error")


class SummaryHTTPError(RuntimeError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, SummaryHTTPError):
        return exc.status_code == 429 or exc.status_code >= 500
    return False


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "voice_summary_request_retry attempt=%s/%s delay_s=%.1f error=%s",
        retry_state.attempt_number,
        MAX_ATTEMPTS,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        exc,
    )


@retry(
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=BASE_DELAY_SECONDS),
    retry=retry_if_exception(_is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
def _post_completion(endpoint: str, payload: Dict[str, Any], timeout_seconds: float) -> httpx.Response:
    response = httpx.post(
        endpoint,
        headers=_auth_headers(),
        json=payload,
        timeout=timeout_seconds,
    )
    if response.status_code >= 400:
        raise SummaryHTTPError(response.status_code, _error_detail(response))
    return response


def request_chat_completion(
    *,
    system_prompt: str,
    user_prompt: str,
    temperature: float = 0.5,
    max_tokens: int = 300,
) -> str:
    payload = {
        "model": _model_name(),
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }

    timeout_seconds = float(os.getenv("VOICE_SUMMARY_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    endpoint = _base_url().rstrip("/") + "/chat/completions"

    try:
        response = _post_completion(endpoint, payload, timeout_seconds)
    except httpx.TimeoutException as exc:
        raise RuntimeError(
            f"Summary model request failed: request timed out after {int(timeout_seconds)} seconds"
        ) from exc
    except httpx.HTTPError as exc:
        raise RuntimeError(f"Summary model request failed: transport error: {exc}") from exc
    except SummaryHTTPError as exc:
        raise RuntimeError(f"Summary model error {exc}") from exc

    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        raise RuntimeError("Summary model returned a non-JSON HTTP response.") from exc

    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices:
        raise RuntimeError("Summary model response did not contain choices.")

    first_choice = choices[0] if isinstance(choices, list) else None
    message = first_choice.get("message") if isinstance(first_choice, dict) else None
    content = _extract_content(message.get("content") if isinstance(message, dict) else "")
    if not content:
        raise RuntimeError("Summary model returned empty assistant content.")
    return content
