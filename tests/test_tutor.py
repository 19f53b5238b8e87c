import json
import logging

import pytest
import requests

import tutor
from tutor import TextGenerator, support_prompt

FALLBACK = "static line"


class _FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload
        self.text = json.dumps(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(response=self)


class _Recorder(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(json.loads(record.getMessage()))


@pytest.fixture
def llm_records():
    handler = _Recorder()
    tutor._LLM_LOGGER.addHandler(handler)
    yield handler.records
    tutor._LLM_LOGGER.removeHandler(handler)


def chat_payload(text):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def test_generate_returns_model_text(monkeypatch, llm_records):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return _FakeResponse(200, chat_payload('  "Small steps still count."  '))

    monkeypatch.setattr(tutor.requests, "post", fake_post)
    generator = TextGenerator("http://llm.test/v1/chat/completions", "tiny-model", timeout=2.5, retries=0, enabled=True)
    text = generator.generate({"user_id": "u1", "reason": "failed", "pre_confidence": 2}, fallback=FALLBACK)

    assert text == "Small steps still count."
    assert calls[0]["timeout"] == 2.5
    assert calls[0]["json"]["model"] == "tiny-model"
    assert calls[0]["json"]["max_tokens"] == tutor.SUPPORT_MAX_TOKENS
    assert "failed a test" in calls[0]["json"]["messages"][1]["content"]

    assert llm_records[-1]["event"] == "llm_call"
    assert llm_records[-1]["outcome"] == "ok"
    assert llm_records[-1]["user_id"] == "u1"
    assert llm_records[-1]["attempts"] == 1


def test_generate_retries_then_falls_back(monkeypatch, llm_records, caplog):
    attempts = []

    def fake_post(url, json=None, timeout=None):
        attempts.append(1)
        raise requests.Timeout("slow model")

    monkeypatch.setattr(tutor.requests, "post", fake_post)
    generator = TextGenerator("http://llm.test", timeout=0.1, retries=1, enabled=True)
    with caplog.at_level(logging.WARNING, logger="tutor"):
        text = generator.generate({"user_id": "u2"}, fallback=FALLBACK)

    assert text == FALLBACK
    assert len(attempts) == 2
    assert "failed after 2 attempt" in caplog.text
    assert llm_records[-1]["outcome"] == "fallback"
    assert llm_records[-1]["error"] == "Timeout"


@pytest.mark.parametrize(
    "response",
    [
        _FakeResponse(500, {"error": "boom"}),
        _FakeResponse(200, {"unexpected": True}),
        _FakeResponse(200, chat_payload("   ")),
    ],
)
def test_bad_responses_use_fallback(monkeypatch, response):
    monkeypatch.setattr(tutor.requests, "post", lambda *a, **k: response)
    generator = TextGenerator("http://llm.test", retries=0, enabled=True)
    assert generator.generate({}, fallback=FALLBACK) == FALLBACK


def test_disabled_generator_never_calls_out(monkeypatch, llm_records):
    def fail(*args, **kwargs):
        raise AssertionError("should not be called")

    monkeypatch.setattr(tutor.requests, "post", fail)
    generator = TextGenerator("http://llm.test", enabled=False)
    assert generator.generate({"user_id": "u3"}, fallback=FALLBACK) == FALLBACK
    assert llm_records[-1]["outcome"] == "disabled"


def test_generator_reads_environment(monkeypatch):
    monkeypatch.setenv("LLM_ENABLED", "false")
    monkeypatch.setenv("LLM_RETRIES", "3")
    monkeypatch.setenv("LLM_TIMEOUT", "4")
    generator = TextGenerator()
    assert generator.enabled is False
    assert generator.retries == 3
    assert generator.timeout == 4.0


def test_support_prompt_mentions_reason_and_rating():
    prompt = support_prompt({"reason": "comparison", "pre_confidence": 1})
    assert "others are ahead" in prompt
    assert "1 out of 5" in prompt
    assert "Something else" in support_prompt({"reason": "mystery"})
