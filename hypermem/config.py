"""
Shared configuration for hypermem.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("hypermem")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/hypermem.db")
DATABASE_URL = os.environ.get("DATABASE_URL")

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Reserved channel for knowledge that did not come from conversation
INGESTION_CHANNEL_ID = os.environ.get("HYPERMEM_INGESTION_CHANNEL_ID", "system-ingestion")

# Request/input limits
MAX_RESULT_LIMIT = _get_int("HYPERMEM_MAX_RESULT_LIMIT", 100)
MAX_TEXT_LENGTH = _get_int("HYPERMEM_MAX_TEXT_LENGTH", 20000)
MAX_SUMMARY_LENGTH = _get_int("HYPERMEM_MAX_SUMMARY_LENGTH", 2000)
MAX_SHORT_TEXT_LENGTH = _get_int("HYPERMEM_MAX_SHORT_TEXT_LENGTH", 255)
MAX_URL_LENGTH = _get_int("HYPERMEM_MAX_URL_LENGTH", 1000)
MAX_METADATA_BYTES = _get_int("HYPERMEM_MAX_METADATA_BYTES", 20000)
MAX_MEMBERSHIPS = _get_int("HYPERMEM_MAX_MEMBERSHIPS", 50)
MAX_KEYWORDS = _get_int("HYPERMEM_MAX_KEYWORDS", 20)

# Urgency model
URGENCY_CEILING = _get_float("URGENCY_CEILING", 10.0)
ACCESS_BOOST_FACTOR = _get_float("ACCESS_BOOST_FACTOR", 1.1)
RETRIEVAL_MIN_URGENCY = _get_float("RETRIEVAL_MIN_URGENCY", 0.1)
LEXICAL_IMPORTANCE_WEIGHT = _get_float("LEXICAL_IMPORTANCE_WEIGHT", 2.0)
LEXICAL_URGENCY_WEIGHT = _get_float("LEXICAL_URGENCY_WEIGHT", 1.0)

# Decay & pruning (per-community values override these)
DEFAULT_DECAY_RATE = _get_float("DEFAULT_DECAY_RATE", 0.1)
DEFAULT_ACCESS_BOOST = _get_float("DEFAULT_ACCESS_BOOST", 0.05)
DEFAULT_MIN_URGENCY_THRESHOLD = _get_float("DEFAULT_MIN_URGENCY_THRESHOLD", 0.1)
DEFAULT_PRUNE_MIN_AGE_DAYS = _get_float("DEFAULT_PRUNE_MIN_AGE_DAYS", 30.0)
DEFAULT_MAX_MEMORIES_PER_NODE = _get_int("DEFAULT_MAX_MEMORIES_PER_NODE", 100)
DECAY_INTERVAL_SECONDS = _get_int("DECAY_INTERVAL_SECONDS", 3600)
DECAY_BATCH_SIZE = _get_int("DECAY_BATCH_SIZE", 500)

# Knowledge ingestion
FEED_ITEMS_PER_FETCH = _get_int("FEED_ITEMS_PER_FETCH", 5)
FEED_DUE_LEEWAY_SECONDS = _get_int("FEED_DUE_LEEWAY_SECONDS", 10)
FEED_DEFAULT_INTERVAL_MINUTES = _get_int("FEED_DEFAULT_INTERVAL_MINUTES", 60)
FEED_FETCH_TIMEOUT_SECONDS = _get_float("FEED_FETCH_TIMEOUT_SECONDS", 20.0)
DOCUMENT_CHUNK_SIZE = _get_int("DOCUMENT_CHUNK_SIZE", 1500)
RSS_IMPORTANCE = _get_float("RSS_IMPORTANCE", 0.6)
DOCUMENT_IMPORTANCE = _get_float("DOCUMENT_IMPORTANCE", 0.8)

# Extraction provider (OpenAI-compatible chat completions)
EXTRACTION_PROVIDER = os.environ.get("EXTRACTION_PROVIDER", "openai").strip().lower()
EXTRACTION_API_URL = os.environ.get(
    "EXTRACTION_API_URL",
    "https://api.openai.com/v1/chat/completions",
)
EXTRACTION_API_KEY = os.environ.get("EXTRACTION_API_KEY") or os.environ.get("OPENAI_API_KEY")
EXTRACTION_MODEL = os.environ.get("EXTRACTION_MODEL", "gpt-4o-mini")
EXTRACTION_MAX_INPUT_CHARS = _get_int("EXTRACTION_MAX_INPUT_CHARS", 3000)
EXTRACTION_TIMEOUT_SECONDS = _get_float("EXTRACTION_TIMEOUT_SECONDS", 30.0)
EXTRACTION_RETRY_MAX = _get_int("EXTRACTION_RETRY_MAX", 2)
EXTRACTION_RETRY_BACKOFF_SECONDS = _get_float("EXTRACTION_RETRY_BACKOFF_SECONDS", 0.5)
EXTRACTION_RETRY_JITTER_SECONDS = _get_float("EXTRACTION_RETRY_JITTER_SECONDS", 0.25)
EXTRACTION_FAILURE_THRESHOLD = _get_int("EXTRACTION_FAILURE_THRESHOLD", 5)
EXTRACTION_COOLDOWN_SECONDS = _get_int("EXTRACTION_COOLDOWN_SECONDS", 60)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if URGENCY_CEILING <= 0:
        errors.append("URGENCY_CEILING must be positive")
    if ACCESS_BOOST_FACTOR < 1.0:
        errors.append("ACCESS_BOOST_FACTOR must be >= 1.0")
    if RETRIEVAL_MIN_URGENCY < 0 or RETRIEVAL_MIN_URGENCY >= URGENCY_CEILING:
        errors.append("RETRIEVAL_MIN_URGENCY must be within [0, URGENCY_CEILING)")
    if DECAY_BATCH_SIZE <= 0:
        errors.append("DECAY_BATCH_SIZE must be positive")
    if DOCUMENT_CHUNK_SIZE < 100:
        errors.append("DOCUMENT_CHUNK_SIZE must be at least 100")

    if EXTRACTION_PROVIDER not in {"openai", "none"}:
        errors.append("EXTRACTION_PROVIDER must be 'openai' or 'none'")
    if EXTRACTION_PROVIDER == "openai" and not EXTRACTION_API_KEY:
        logger.warning(
            "EXTRACTION_API_KEY is not set; extraction will degrade to truncated summaries."
        )

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
