import json
import logging
import os
import time
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

import requests

from env_validation import DEFAULTS, get_env_bool, get_env_float, get_env_int

logger = logging.getLogger(__name__)

# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "gpt-4o-mini")
LLM_URL = os.getenv("LLM_URL", DEFAULTS["LLM_URL"])

SUPPORT_MAX_TOKENS = 64
SUPPORT_TEMPERATURE = 0.7

SYSTEM_SUPPORT_PROMPT = (
    "You are a warm, encouraging maths study buddy for South African high "
    "school and first-year students. Reply with one short supportive message "
    "of at most 30 words. No lists, no questions, at most one emoji."
)

_REASON_CONTEXT = {
    "failed": "They recently failed a test.",
    "confused": "They feel confused in class.",
    "comparison": "They feel others are ahead of them.",
    "comment": "Someone said something discouraging to them.",
    "other": "Something else is knocking their confidence.",
}

_LLM_LOGGER = logging.getLogger("study_buddy.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False


class GenerationError(RuntimeError):
    """The endpoint answered, but not with usable text."""


def support_prompt(context: Mapping[str, Any]) -> str:
    """User message for the confidence support line."""
    reason = str(context.get("reason") or "other")
    level = context.get("pre_confidence")
    parts = [_REASON_CONTEXT.get(reason, _REASON_CONTEXT["other"])]
    if level is not None:
        parts.append(f"Their confidence in maths is {level} out of 5.")
    parts.append("Write the supportive message now.")
    return " ".join(parts)


def _extract_text(data: Any) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        try:
            content = data["choices"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise GenerationError(f"Unexpected LLM response: {str(data)[:200]}")
    text = str(content or "").strip().strip('"').strip()
    if not text:
        raise GenerationError("LLM returned empty content")
    return text


class TextGenerator:
    """Short supportive text from an OpenAI-compatible chat endpoint.

    :meth:`generate` never raises: timeouts, HTTP errors and malformed
    payloads all end in the caller's ``fallback`` text. Every call writes
    one JSON record to the ``study_buddy.llm`` logger.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        model: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        self.url = url or os.getenv("LLM_URL") or LLM_URL
        self.model = model or os.getenv("MODEL_ID") or MODEL_ID
        self.timeout = timeout if timeout is not None else get_env_float("LLM_TIMEOUT", 10.0)
        self.retries = max(0, retries if retries is not None else get_env_int("LLM_RETRIES", 1))
        self.enabled = enabled if enabled is not None else get_env_bool("LLM_ENABLED", True)

    def _payload(self, prompt_context: Mapping[str, Any], max_tokens: Optional[int]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_SUPPORT_PROMPT},
                {"role": "user", "content": support_prompt(prompt_context)},
            ],
            "temperature": SUPPORT_TEMPERATURE,
        }
        if max_tokens is not None:
            payload["max_tokens"] = int(max_tokens)
        return payload

    def _call(self, payload: Dict[str, Any]) -> str:
        response = requests.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return _extract_text(response.json())

    def generate(
        self,
        prompt_context: Mapping[str, Any],
        *,
        fallback: str,
        max_tokens: Optional[int] = SUPPORT_MAX_TOKENS,
    ) -> str:
        if not self.enabled:
            self._log(prompt_context, outcome="disabled", attempts=0, start=time.perf_counter())
            return fallback

        payload = self._payload(prompt_context, max_tokens)
        start = time.perf_counter()
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts <= self.retries:
            attempts += 1
            try:
                text = self._call(payload)
            except (requests.RequestException, ValueError, GenerationError) as exc:
                last_error = exc
                logger.debug("LLM attempt %s failed: %s", attempts, exc)
                continue
            self._log(prompt_context, outcome="ok", attempts=attempts, start=start)
            return text

        logger.warning("Support text generation failed after %s attempt(s): %s", attempts, last_error)
        self._log(
            prompt_context,
            outcome="fallback",
            attempts=attempts,
            start=start,
            error=type(last_error).__name__ if last_error else None,
        )
        return fallback

    def _log(
        self,
        prompt_context: Mapping[str, Any],
        *,
        outcome: str,
        attempts: int,
        start: float,
        error: Optional[str] = None,
    ) -> None:
        record = {
            "event": "llm_call",
            "request_id": str(uuid4()),
            "user_id": prompt_context.get("user_id"),
            "model": self.model,
            "latency_ms": int((time.perf_counter() - start) * 1000),
            "attempts": attempts,
            "outcome": outcome,
            "error": error,
        }
        try:
            _LLM_LOGGER.info(json.dumps(record, ensure_ascii=False, sort_keys=True))
        except (TypeError, ValueError):
            _LLM_LOGGER.info(record)
