"""
Structured knowledge extraction through an OpenAI-compatible chat endpoint.

The pipeline never fails because of this module: every provider problem
degrades to a truncated summary with no entities.
"""

from __future__ import annotations

import json
import random
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

import hypermem.config as config
from hypermem.errors import ExtractionProviderError
from hypermem.models import NodeType
from hypermem.services.graph_shared import logger

MIN_EXTRACTABLE_LENGTH = 10
DEGRADED_SUMMARY_LENGTH = 100
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
ENTITY_TYPES = {item.value for item in NodeType}
DEFAULT_ENTITY_TYPE = NodeType.topic.value

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

PROMPT_TEMPLATE = """Analyze the following text and extract key knowledge for a hypergraph database.
Return a JSON object with:
1. "summary": A concise 1-sentence summary of the main fact.
2. "entities": An array of objects with "name" and "type" (one of: topic, concept, event, user, channel).

TEXT:
{text}

RESPONSE (JSON ONLY):"""


@dataclass
class ExtractedEntity:
    key: str
    name: str
    type: str = DEFAULT_ENTITY_TYPE

    def to_dict(self) -> dict:
        return {"key": self.key, "name": self.name, "type": self.type}


@dataclass
class ExtractionResult:
    summary: str
    entities: list[ExtractedEntity] = field(default_factory=list)
    degraded: bool = False


def entity_key(name: str) -> str:
    """'Rust Language' -> 'rust-language'"""
    return _WHITESPACE_RE.sub("-", name.strip().lower())


def degraded_result(text: str) -> ExtractionResult:
    return ExtractionResult(
        summary=text[:DEGRADED_SUMMARY_LENGTH] + "...",
        entities=[],
        degraded=True,
    )


class CircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "last_error": self._last_error,
            }


def parse_extraction_payload(raw: str) -> ExtractionResult:
    """
    Parse the model's reply into an ExtractionResult.

    Raises:
        ValueError: reply is not a JSON object of the expected shape
    """
    cleaned = _FENCE_RE.sub("", raw).strip()
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("extraction reply is not a JSON object")
    raw_entities = data.get("entities") or []
    if not isinstance(raw_entities, list):
        raise ValueError("entities must be a list")

    entities = []
    for item in raw_entities:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        entity_type = item.get("type")
        if entity_type not in ENTITY_TYPES:
            entity_type = DEFAULT_ENTITY_TYPE
        entities.append(ExtractedEntity(key=entity_key(name), name=name.strip(), type=entity_type))

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = "Summary unavailable"
    return ExtractionResult(summary=summary.strip(), entities=entities)


class ExtractionClient:
    """Sync client; callers on an event loop should use asyncio.to_thread."""

    def __init__(
        self,
        api_url: str = config.EXTRACTION_API_URL,
        api_key: Optional[str] = config.EXTRACTION_API_KEY,
        model: str = config.EXTRACTION_MODEL,
        provider: str = config.EXTRACTION_PROVIDER,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry_max: int = config.EXTRACTION_RETRY_MAX,
        backoff_seconds: float = config.EXTRACTION_RETRY_BACKOFF_SECONDS,
        jitter_seconds: float = config.EXTRACTION_RETRY_JITTER_SECONDS,
        max_input_chars: int = config.EXTRACTION_MAX_INPUT_CHARS,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.provider = provider
        self.retry_max = max(0, retry_max)
        self.backoff_seconds = backoff_seconds
        self.jitter_seconds = jitter_seconds
        self.max_input_chars = max_input_chars
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.EXTRACTION_FAILURE_THRESHOLD,
            cooldown_seconds=config.EXTRACTION_COOLDOWN_SECONDS,
        )
        self._owns_client = http_client is None
        self._client = http_client

    def _http(self) -> httpx.Client:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.Client(
                timeout=httpx.Timeout(config.EXTRACTION_TIMEOUT_SECONDS),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=20),
                headers=headers,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_seconds * (2 ** attempt)
        jitter = random.uniform(0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        time.sleep(base + jitter)

    def _unavailable(self, detail: str) -> None:
        logger.warning("Extraction provider unavailable", extra={"detail": detail})
        raise ExtractionProviderError(f"extraction provider unavailable: {detail}")

    def complete(self, prompt: str) -> str:
        """Send one prompt and return the reply text."""
        if self.provider == "none":
            self._unavailable("extraction provider disabled")
        if not self.api_key and self._owns_client:
            self._unavailable("no api key configured")
        if self.breaker.is_open():
            self._unavailable("circuit breaker open")

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0,
        }
        for attempt in range(self.retry_max + 1):
            try:
                response = self._http().post(self.api_url, json=payload)
            except httpx.RequestError as exc:
                if attempt >= self.retry_max:
                    self.breaker.record_failure(str(exc))
                    self._unavailable("request error")
                self._sleep_backoff(attempt)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                if attempt >= self.retry_max:
                    self.breaker.record_failure(f"status {response.status_code}")
                    self._unavailable(f"status {response.status_code}")
                self._sleep_backoff(attempt)
                continue
            if response.status_code >= 400:
                self.breaker.record_failure(f"status {response.status_code}")
                self._unavailable(f"status {response.status_code}")

            try:
                content = response.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                self.breaker.record_failure("malformed response")
                raise ExtractionProviderError("malformed provider response") from exc
            self.breaker.record_success()
            return content or ""
        self._unavailable("retries exhausted")

    def extract(self, text: str) -> ExtractionResult:
        if not text or len(text) < MIN_EXTRACTABLE_LENGTH:
            return ExtractionResult(summary="No content", entities=[])
        prompt = PROMPT_TEMPLATE.format(text=text[: self.max_input_chars])
        try:
            return parse_extraction_payload(self.complete(prompt))
        except (ExtractionProviderError, ValueError) as exc:
            logger.warning(f"Failed to extract structured knowledge: {exc}")
            return degraded_result(text)
