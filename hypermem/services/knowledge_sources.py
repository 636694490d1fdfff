"""
Bookkeeping for knowledge sources: syndicated feeds and uploaded documents.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import desc

import hypermem.config as config
from hypermem.errors import ValidationIssue
from hypermem.models import (
    DocumentStatus,
    Hyperedge,
    HyperedgeMembership,
    IngestedDocument,
    RssFeed,
    as_utc,
    utcnow,
)
from hypermem.services.graph_shared import (
    _iso,
    _validate_optional_text,
    _validate_required_text,
    MAX_SHORT_TEXT_LENGTH,
    MAX_URL_LENGTH,
    logger,
)
from hypermem.services.hyperedge_store import find_edges_by_metadata

DOCUMENT_STATUSES = {item.value for item in DocumentStatus}
FEED_UPDATE_FIELDS = ("url", "name", "interval_minutes", "enabled")


def serialize_feed(feed: RssFeed) -> dict:
    return {
        "id": feed.id,
        "community_id": feed.community_id,
        "url": feed.url,
        "name": feed.name,
        "interval_minutes": feed.interval_minutes,
        "enabled": feed.enabled,
        "last_fetched_at": _iso(feed.last_fetched_at),
        "created_at": _iso(feed.created_at),
    }


def serialize_document(document: IngestedDocument) -> dict:
    return {
        "id": document.id,
        "community_id": document.community_id,
        "filename": document.filename,
        "file_type": document.file_type,
        "status": document.status,
        "error_message": document.error_message,
        "processed_at": _iso(document.processed_at),
        "created_at": _iso(document.created_at),
    }


# =============================================================================
# Feeds
# =============================================================================

def _validate_feed_url(url: str) -> None:
    _validate_required_text(url, "url", MAX_URL_LENGTH)
    if not url.lower().startswith(("http://", "https://")):
        raise ValidationIssue("url must be an http(s) URL", field="url", error_type="invalid_value")


def _validate_interval(value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationIssue(
            "interval_minutes must be a positive integer",
            field="interval_minutes",
            error_type="invalid_value",
        )


def create_feed(
    db,
    community_id: str,
    url: str,
    name: Optional[str] = None,
    interval_minutes: int = config.FEED_DEFAULT_INTERVAL_MINUTES,
    enabled: bool = True,
) -> RssFeed:
    _validate_required_text(community_id, "community_id", 100)
    _validate_feed_url(url)
    _validate_optional_text(name, "name", MAX_SHORT_TEXT_LENGTH)
    _validate_interval(interval_minutes)
    feed = RssFeed(
        community_id=community_id,
        url=url.strip(),
        name=name,
        interval_minutes=interval_minutes,
        enabled=bool(enabled),
    )
    try:
        db.add(feed)
        db.commit()
        db.refresh(feed)
    except Exception:
        db.rollback()
        raise
    logger.info("feed_created", extra={"community_id": community_id, "feed_id": feed.id})
    return feed


def list_feeds(db, community_id: str, enabled_only: bool = False) -> list[RssFeed]:
    query = db.query(RssFeed).filter(RssFeed.community_id == community_id)
    if enabled_only:
        query = query.filter(RssFeed.enabled.is_(True))
    return query.order_by(RssFeed.id).all()


def get_feed(db, community_id: str, feed_id: int) -> Optional[RssFeed]:
    return (
        db.query(RssFeed)
        .filter(RssFeed.community_id == community_id, RssFeed.id == feed_id)
        .first()
    )


def update_feed(db, community_id: str, feed_id: int, values: dict) -> Optional[RssFeed]:
    unknown = sorted(set(values) - set(FEED_UPDATE_FIELDS))
    if unknown:
        raise ValidationIssue(
            f"Unknown feed fields: {', '.join(unknown)}",
            field=unknown[0],
            error_type="invalid_value",
        )
    if "url" in values:
        _validate_feed_url(values["url"])
    if "name" in values:
        _validate_optional_text(values["name"], "name", MAX_SHORT_TEXT_LENGTH)
    if "interval_minutes" in values:
        _validate_interval(values["interval_minutes"])

    feed = get_feed(db, community_id, feed_id)
    if feed is None:
        return None
    try:
        for field, value in values.items():
            setattr(feed, field, value)
        db.commit()
        db.refresh(feed)
    except Exception:
        db.rollback()
        raise
    return feed


def delete_feed(db, community_id: str, feed_id: int) -> bool:
    """Remove the subscription; memories already ingested from it stay."""
    feed = get_feed(db, community_id, feed_id)
    if feed is None:
        return False
    try:
        db.delete(feed)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return True


def mark_feed_fetched(db, feed_id: int, fetched_at: Optional[datetime] = None) -> None:
    try:
        db.query(RssFeed).filter(RssFeed.id == feed_id).update(
            {RssFeed.last_fetched_at: fetched_at or utcnow()},
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise


def feed_is_due(
    feed: RssFeed,
    now: Optional[datetime] = None,
    leeway_seconds: int = config.FEED_DUE_LEEWAY_SECONDS,
) -> bool:
    """A feed is due when never fetched or its interval (minus leeway) has elapsed."""
    if feed.last_fetched_at is None:
        return True
    now = now or utcnow()
    interval = timedelta(minutes=feed.interval_minutes or config.FEED_DEFAULT_INTERVAL_MINUTES)
    elapsed = now - as_utc(feed.last_fetched_at)
    return elapsed >= interval - timedelta(seconds=leeway_seconds)


# =============================================================================
# Documents
# =============================================================================

def _file_type(filename: str) -> Optional[str]:
    if "." not in filename:
        return None
    return filename.rsplit(".", 1)[-1].lower() or None


def create_document(db, community_id: str, filename: str) -> IngestedDocument:
    _validate_required_text(community_id, "community_id", 100)
    _validate_required_text(filename, "filename", 500)
    document = IngestedDocument(
        community_id=community_id,
        filename=filename,
        file_type=_file_type(filename),
        status=DocumentStatus.pending.value,
    )
    try:
        db.add(document)
        db.commit()
        db.refresh(document)
    except Exception:
        db.rollback()
        raise
    return document


def get_document(db, document_id: int) -> Optional[IngestedDocument]:
    return db.get(IngestedDocument, document_id)


def set_document_status(
    db,
    document_id: int,
    status: str,
    error_message: Optional[str] = None,
    processed: bool = False,
) -> None:
    if status not in DOCUMENT_STATUSES:
        raise ValidationIssue(
            f"status must be one of: {', '.join(sorted(DOCUMENT_STATUSES))}",
            field="status",
            error_type="invalid_value",
        )
    values = {IngestedDocument.status: status, IngestedDocument.error_message: error_message}
    if processed:
        values[IngestedDocument.processed_at] = utcnow()
    try:
        db.query(IngestedDocument).filter(IngestedDocument.id == document_id).update(
            values,
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise


def list_documents(db, community_id: str) -> list[IngestedDocument]:
    return (
        db.query(IngestedDocument)
        .filter(IngestedDocument.community_id == community_id)
        .order_by(desc(IngestedDocument.created_at), desc(IngestedDocument.id))
        .all()
    )


def delete_document(db, community_id: str, document_id: int) -> Optional[int]:
    """
    Delete a document record together with the memories derived from it.

    Returns the number of memories removed, or None if the document does not
    exist in this community.
    """
    document = (
        db.query(IngestedDocument)
        .filter(IngestedDocument.community_id == community_id, IngestedDocument.id == document_id)
        .first()
    )
    if document is None:
        return None
    try:
        edge_ids = [
            edge.id for edge in find_edges_by_metadata(db, community_id, "document_id", document_id)
        ]
        removed = 0
        if edge_ids:
            db.query(HyperedgeMembership).filter(
                HyperedgeMembership.hyperedge_id.in_(edge_ids)
            ).delete(synchronize_session=False)
            removed = db.query(Hyperedge).filter(
                Hyperedge.id.in_(edge_ids)
            ).delete(synchronize_session=False)
        db.delete(document)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(
        "document_deleted",
        extra={"community_id": community_id, "document_id": document_id, "edges_removed": removed},
    )
    return removed
