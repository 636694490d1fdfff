import json

import httpx
import pytest

from hypermem.errors import ExtractionProviderError
from hypermem.services.extraction import (
    CircuitBreaker,
    ExtractionClient,
    entity_key,
    parse_extraction_payload,
)

TEXT = "Rust 1.80 ships a faster borrow checker and new lints for async code."


def _reply(content, status_code=200):
    return httpx.Response(status_code, json={"choices": [{"message": {"content": content}}]})


def _client(handler, breaker=None, provider="openai"):
    return ExtractionClient(
        api_url="https://llm.example.test/v1/chat/completions",
        api_key="k",
        model="test-model",
        provider=provider,
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        breaker=breaker or CircuitBreaker(2, 60),
        retry_max=0,
        backoff_seconds=0,
        jitter_seconds=0,
    )


def test_extract_parses_fenced_json():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        payload = {
            "summary": "Rust 1.80 improves the borrow checker.",
            "entities": [
                {"name": "Rust Language", "type": "topic"},
                {"name": "Borrow Checker", "type": "gadget"},
                {"name": "  ", "type": "concept"},
            ],
        }
        return _reply("```json\n" + json.dumps(payload) + "\n```")

    result = _client(handler).extract(TEXT)

    assert result.degraded is False
    assert result.summary == "Rust 1.80 improves the borrow checker."
    assert [entity.to_dict() for entity in result.entities] == [
        {"key": "rust-language", "name": "Rust Language", "type": "topic"},
        {"key": "borrow-checker", "name": "Borrow Checker", "type": "topic"},
    ]
    assert seen["body"]["model"] == "test-model"
    assert TEXT in seen["body"]["messages"][0]["content"]


def test_server_error_degrades():
    result = _client(lambda request: httpx.Response(500)).extract(TEXT)

    assert result.degraded is True
    assert result.summary == TEXT[:100] + "..."
    assert result.entities == []


def test_malformed_reply_degrades():
    result = _client(lambda request: _reply("sure! here are some entities")).extract(TEXT)

    assert result.degraded is True
    assert result.summary.endswith("...")


def test_short_text_is_not_sent():
    def handler(request):
        raise AssertionError("provider should not be called")

    result = _client(handler).extract("hi")
    assert result.summary == "No content"
    assert result.entities == []


def test_breaker_opens_after_repeated_failures():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(503)

    client = _client(handler, breaker=CircuitBreaker(2, 60))
    for _ in range(4):
        assert client.extract(TEXT).degraded is True

    assert calls["count"] == 2
    assert client.breaker.status()["open"] is True
    with pytest.raises(ExtractionProviderError):
        client.complete("anything")


def test_disabled_provider_degrades():
    def handler(request):
        raise AssertionError("provider should not be called")

    client = _client(handler, provider="none")
    with pytest.raises(ExtractionProviderError):
        client.complete("prompt")
    assert client.extract(TEXT).degraded is True


def test_parse_payload_defaults():
    result = parse_extraction_payload('{"entities": []}')
    assert result.summary == "Summary unavailable"
    assert result.entities == []

    with pytest.raises(ValueError):
        parse_extraction_payload("[1, 2]")

    assert entity_key("  Machine   Learning ") == "machine-learning"
