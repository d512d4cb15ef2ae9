from __future__ import annotations

import logging
import os
from typing import Any

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential


logger = logging.getLogger("uvicorn.error")

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_AUDIO_MODEL = "gpt-4o-audio-preview"
DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 5.0
RETRYABLE_STATUS_CODES = {408, 409, 429}


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError("Missing OPENAI_API_KEY. Set it before running voice analysis.")
    return api_key


def _build_client() -> OpenAI:
    base_url = os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
    timeout = float(os.getenv("VOICE_AUDIO_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    # Attempts are bounded by the tenacity policy on _create_completion.
    return OpenAI(base_url=base_url, api_key=_get_api_key(), timeout=timeout, max_retries=0)


def _audio_model_name() -> str:
    return os.getenv("VOICE_AUDIO_MODEL", DEFAULT_AUDIO_MODEL).strip() or DEFAULT_AUDIO_MODEL


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (APITimeoutError, APIConnectionError)):
        return True
    if isinstance(exc, APIStatusError):
        status_code = getattr(exc, "status_code", None) or 0
        return status_code in RETRYABLE_STATUS_CODES or status_code >= 500
    return False


def _describe(exc: BaseException) -> str:
    if isinstance(exc, APITimeoutError):
        return "request timed out"
    if isinstance(exc, APIStatusError):
        status_code = getattr(exc, "status_code", None)
        detail = getattr(exc, "message", None) or str(exc)
        return f"({status_code}) {detail}" if status_code is not None else detail
    return str(exc)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "voice_audio_request_retry attempt=%s/%s delay_s=%.1f error=%s",
        retry_state.attempt_number,
        MAX_ATTEMPTS,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        _describe(exc) if exc else "unknown",
    )


@retry(
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=BASE_DELAY_SECONDS),
    retry=retry_if_exception(_is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
def _create_completion(client: OpenAI, kwargs: dict[str, Any]):
    return client.chat.completions.create(**kwargs)


def request_audio_analysis(
    *,
    system_prompt: str,
    user_text: str,
    audio_base64: str,
    audio_format: str,
    max_tokens: int = 4096,
    temperature: float = 0.3,
) -> str:
    """Send one base64 audio clip plus instructions to the audio model and
    return the raw JSON text it produced.

    Transient failures (timeouts, connection errors, 429/5xx) are retried with
    exponential backoff; anything else fails on the first attempt.
    """
    client = _build_client()
    kwargs = {
        "model": _audio_model_name(),
        "messages": [
            {"role": "system", "content": system_prompt},
            {
                "role": "user",
                "content": [
                    {
                        "type": "input_audio",
                        "input_audio": {"data": audio_base64, "format": audio_format},
                    },
                    {"type": "text", "text": user_text},
                ],
            },
        ],
        "response_format": {"type": "json_object"},
        "temperature": temperature,
        "max_tokens": max_tokens,
    }

    try:
        response = _create_completion(client, kwargs)
    except (APIStatusError, APIConnectionError) as exc:
        qualifier = f"after {MAX_ATTEMPTS} attempt(s)" if _is_transient(exc) else "without retry"
        raise RuntimeError(f"Audio model request failed {qualifier}: {_describe(exc)}") from exc

    choice = response.choices[0] if response.choices else None
    if choice is None:
        raise RuntimeError("Audio model response did not contain choices.")
    content = _extract_content(choice.message.content)
    if not content:
        raise RuntimeError("Audio model returned an empty response.")
    return content
