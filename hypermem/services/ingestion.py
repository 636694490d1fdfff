"""
Knowledge ingestion: syndicated feeds and uploaded documents become memories
on the reserved ingestion channel.

Failures are isolated per item (feed entry, feed, document); nothing here
raises into the scheduler that calls it.
"""

from __future__ import annotations

import html
import io
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

import feedparser
import httpx
from pypdf import PdfReader

import hypermem.config as config
from hypermem.errors import FeedFetchError, UnsupportedDocumentError
from hypermem.models import DocumentStatus, RssFeed
from hypermem.services.extraction import ExtractedEntity, ExtractionResult
from hypermem.services.graph_shared import (
    INGESTION_CHANNEL_ID,
    MAX_MEMBERSHIPS,
    MAX_SHORT_TEXT_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TEXT_LENGTH,
    logger,
)
from hypermem.services.hyperedge_store import create_hyperedge, find_edges_by_metadata
from hypermem.services.knowledge_sources import (
    feed_is_due,
    list_feeds,
    mark_feed_fetched,
    set_document_status,
)
from hypermem.services.text_chunks import chunk_text, extract_keywords

TEXT_EXTENSIONS = {"txt", "md"}
PDF_EXTENSIONS = {"pdf"}

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


class Extractor(Protocol):
    def extract(self, text: str) -> ExtractionResult:
        ...


@dataclass
class FeedItem:
    title: str
    link: Optional[str]
    snippet: str


# =============================================================================
# Feeds
# =============================================================================

def _plain_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", value))).strip()


def fetch_feed(url: str, timeout: float = config.FEED_FETCH_TIMEOUT_SECONDS) -> list[FeedItem]:
    """Download and parse an RSS/Atom feed."""
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise FeedFetchError(f"Failed to fetch feed {url}: {exc}") from exc

    parsed = feedparser.parse(response.content)
    if parsed.bozo and not parsed.entries:
        raise FeedFetchError(f"Failed to parse feed {url}: {parsed.get('bozo_exception')}")

    items = []
    for entry in parsed.entries:
        items.append(
            FeedItem(
                title=_plain_text(entry.get("title")),
                link=entry.get("link"),
                snippet=_plain_text(entry.get("summary") or entry.get("description")),
            )
        )
    return items


def _entity_memberships(entities: list[ExtractedEntity], role: str, weight: float) -> list[dict]:
    memberships = []
    for entity in entities[:MAX_MEMBERSHIPS]:
        memberships.append(
            {
                "entity": {
                    "key": entity.key[:MAX_SHORT_TEXT_LENGTH],
                    "type": entity.type,
                    "name": entity.name[:MAX_SHORT_TEXT_LENGTH],
                },
                "role": role,
                "weight": weight,
            }
        )
    return memberships


def _ingest_feed_item(db, community_id: str, feed: RssFeed, item: FeedItem, extractor: Extractor) -> None:
    extraction = extractor.extract(item.snippet or item.title or "")
    create_hyperedge(
        db,
        community_id,
        {
            "channel_id": INGESTION_CHANNEL_ID,
            "edge_type": "fact",
            "summary": f"RSS: {item.title} - {extraction.summary}"[:MAX_SUMMARY_LENGTH],
            "content": f"{item.link}\n\n{item.snippet}"[:MAX_TEXT_LENGTH],
            "importance": config.RSS_IMPORTANCE,
            "memberships": _entity_memberships(extraction.entities, "topic", 0.8),
            "metadata": {"source": "rss", "url": item.link, "feed_id": feed.id},
        },
    )


def ingest_feed(
    db,
    community_id: str,
    feed: RssFeed,
    extractor: Extractor,
    fetcher: Callable[[str], list[FeedItem]] = fetch_feed,
    now: Optional[datetime] = None,
) -> dict:
    """
    Ingest the newest items of one feed.

    Items whose link was already ingested are skipped. The feed is stamped
    as fetched only once the fetch itself succeeded.
    """
    result = {"feed_id": feed.id, "status": "ok", "ingested": 0, "skipped": 0, "failed": 0}
    try:
        items = fetcher(feed.url)
    except Exception as exc:
        logger.error(
            f"Failed to process feed {feed.url}: {exc}",
            extra={"community_id": community_id, "feed_id": feed.id},
        )
        result.update(status="error", error=str(exc))
        return result

    for item in items[: config.FEED_ITEMS_PER_FETCH]:
        if not item.link:
            result["skipped"] += 1
            continue
        if find_edges_by_metadata(db, community_id, "url", item.link):
            logger.debug("feed_item_already_ingested", extra={"feed_id": feed.id, "url": item.link})
            result["skipped"] += 1
            continue
        try:
            _ingest_feed_item(db, community_id, feed, item, extractor)
        except Exception as exc:
            db.rollback()
            result["failed"] += 1
            logger.error(
                f"Failed to ingest feed item {item.link}: {exc}",
                extra={"community_id": community_id, "feed_id": feed.id},
            )
            continue
        result["ingested"] += 1

    mark_feed_fetched(db, feed.id, now)
    logger.info("feed_processed", extra={"community_id": community_id, **result})
    return result


def run_due_feeds(
    db,
    community_id: str,
    extractor: Extractor,
    now: Optional[datetime] = None,
    fetcher: Callable[[str], list[FeedItem]] = fetch_feed,
) -> list[dict]:
    """Ingest every enabled feed whose interval has elapsed; one bad feed never stops the rest."""
    results = []
    for feed in list_feeds(db, community_id, enabled_only=True):
        if not feed_is_due(feed, now):
            continue
        try:
            results.append(ingest_feed(db, community_id, feed, extractor, fetcher=fetcher, now=now))
        except Exception as exc:
            db.rollback()
            logger.error(
                f"Feed run failed for {feed.url}: {exc}",
                extra={"community_id": community_id, "feed_id": feed.id},
            )
            results.append({"feed_id": feed.id, "status": "error", "error": str(exc)})
    return results


# =============================================================================
# Documents
# =============================================================================

def _extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def read_document_text(payload: bytes, filename: str) -> str:
    extension = _extension(filename)
    if extension in TEXT_EXTENSIONS:
        return payload.decode("utf-8", errors="replace")
    if extension in PDF_EXTENSIONS:
        reader = PdfReader(io.BytesIO(payload))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    raise UnsupportedDocumentError(f"Unsupported file type: {extension or filename}")


def _chunk_memberships(chunk: str, extractor: Optional[Extractor]) -> list[dict]:
    if extractor is not None:
        return _entity_memberships(extractor.extract(chunk).entities, "subject", 0.9)
    return [
        {
            "entity": {"key": keyword, "type": "topic", "name": keyword},
            "role": "subject",
            "weight": 0.9,
        }
        for keyword in extract_keywords(chunk)
    ]


def ingest_document(
    db,
    community_id: str,
    document_id: int,
    payload: bytes,
    filename: str,
    extractor: Optional[Extractor] = None,
) -> dict:
    """
    Turn an uploaded document into one memory per chunk.

    Status moves pending -> processing -> completed, or to error with the
    failure message. Only this document is affected by a failure.
    """
    try:
        set_document_status(db, document_id, DocumentStatus.processing.value)
        text = read_document_text(payload, filename)
        chunks = chunk_text(text, config.DOCUMENT_CHUNK_SIZE)
        logger.info(
            "document_chunked",
            extra={"community_id": community_id, "document_id": document_id, "chunks": len(chunks)},
        )

        total = len(chunks)
        for index, chunk in enumerate(chunks):
            create_hyperedge(
                db,
                community_id,
                {
                    "channel_id": INGESTION_CHANNEL_ID,
                    "edge_type": "fact",
                    "summary": f"Document: {filename} (Part {index + 1}/{total})"[:MAX_SUMMARY_LENGTH],
                    "content": chunk,
                    "importance": config.DOCUMENT_IMPORTANCE,
                    "memberships": _chunk_memberships(chunk, extractor),
                    "metadata": {
                        "source": "upload",
                        "filename": filename,
                        "document_id": document_id,
                        "chunk_index": index,
                        "total_chunks": total,
                    },
                },
            )

        set_document_status(db, document_id, DocumentStatus.completed.value, processed=True)
    except Exception as exc:
        db.rollback()
        logger.error(
            f"Failed to process document {filename}: {exc}",
            extra={"community_id": community_id, "document_id": document_id},
        )
        try:
            set_document_status(db, document_id, DocumentStatus.error.value, error_message=str(exc))
        except Exception as status_exc:
            logger.error(f"Failed to record document error status: {status_exc}")
        return {"document_id": document_id, "status": DocumentStatus.error.value, "error": str(exc)}

    return {
        "document_id": document_id,
        "status": DocumentStatus.completed.value,
        "chunks": total,
    }
