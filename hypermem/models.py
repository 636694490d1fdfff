"""
hypermem Database Models
PostgreSQL (JSONB) or SQLite schema for the community hypergraph
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, Float, Boolean,
    DateTime, ForeignKey, CheckConstraint, Index, UniqueConstraint, JSON, event
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base

import hypermem.config as config
from hypermem.errors import ValidationIssue

JSON_TYPE = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class NodeType(str, PyEnum):
    user = "user"
    channel = "channel"
    topic = "topic"
    concept = "concept"
    event = "event"
    emotion = "emotion"


class DocumentStatus(str, PyEnum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    error = "error"


# =============================================================================
# Nodes (entities)
# =============================================================================

class HyperNode(Base):
    __tablename__ = "hyper_nodes"

    id = Column(Integer, primary_key=True)
    community_id = Column(String(100), nullable=False)
    external_key = Column(String(255), nullable=False)  # caller-chosen, e.g. platform user id
    node_type = Column(String(20), nullable=False)
    display_name = Column(String(255), nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    memberships = relationship("HyperedgeMembership", back_populates="node")

    __table_args__ = (
        UniqueConstraint("community_id", "external_key", "node_type", name="uq_hyper_nodes_identity"),
        Index("ix_hyper_nodes_community_type", "community_id", "node_type"),
    )


# =============================================================================
# Hyperedges (memories)
# =============================================================================

class Hyperedge(Base):
    __tablename__ = "hyperedges"

    id = Column(Integer, primary_key=True)
    community_id = Column(String(100), nullable=False)
    channel_id = Column(String(100), nullable=False)
    edge_type = Column(String(50), nullable=False)
    summary = Column(Text, nullable=False)
    content = Column(Text)
    importance = Column(Float, default=1.0, nullable=False)
    urgency = Column(Float, default=1.0, nullable=False)

    # Access tracking
    access_count = Column(BigInteger, default=0, nullable=False)
    last_accessed_at = Column(DateTime(timezone=True))

    source_message_id = Column(String(100))
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    memberships = relationship(
        "HyperedgeMembership",
        back_populates="hyperedge",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("importance >= 0", name="check_hyperedge_importance"),
        CheckConstraint("urgency >= 0", name="check_hyperedge_urgency"),
        Index("ix_hyperedges_community_channel", "community_id", "channel_id"),
        Index("ix_hyperedges_community_type", "community_id", "edge_type"),
        Index("ix_hyperedges_urgency", "urgency"),
        Index("ix_hyperedges_created_at", "created_at"),
    )


class HyperedgeMembership(Base):
    __tablename__ = "hyperedge_memberships"

    id = Column(Integer, primary_key=True)
    hyperedge_id = Column(Integer, ForeignKey("hyperedges.id", ondelete="CASCADE"), nullable=False)
    node_id = Column(Integer, ForeignKey("hyper_nodes.id"), nullable=False)
    role = Column(String(50), nullable=False)
    weight = Column(Float, default=1.0, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    hyperedge = relationship("Hyperedge", back_populates="memberships")
    node = relationship("HyperNode", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("hyperedge_id", "node_id", "role", name="uq_hyperedge_memberships_edge_node_role"),
        Index("ix_hyperedge_memberships_node", "node_id"),
    )


# =============================================================================
# Per-community decay settings
# =============================================================================

class HypergraphConfig(Base):
    __tablename__ = "hypergraph_config"

    community_id = Column(String(100), primary_key=True)
    extraction_enabled = Column(Boolean, default=True, nullable=False)
    decay_rate = Column(Float, default=config.DEFAULT_DECAY_RATE, nullable=False)
    access_boost = Column(Float, default=config.DEFAULT_ACCESS_BOOST, nullable=False)
    min_urgency_threshold = Column(Float, default=config.DEFAULT_MIN_URGENCY_THRESHOLD, nullable=False)
    prune_min_age_days = Column(Float, default=config.DEFAULT_PRUNE_MIN_AGE_DAYS, nullable=False)
    max_memories_per_node = Column(Integer, default=config.DEFAULT_MAX_MEMORIES_PER_NODE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# Knowledge sources
# =============================================================================

class RssFeed(Base):
    __tablename__ = "rss_feeds"

    id = Column(Integer, primary_key=True)
    community_id = Column(String(100), nullable=False)
    url = Column(String(1000), nullable=False)
    name = Column(String(255))
    interval_minutes = Column(Integer, default=config.FEED_DEFAULT_INTERVAL_MINUTES, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    last_fetched_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("interval_minutes > 0", name="check_rss_feed_interval"),
        Index("ix_rss_feeds_community", "community_id"),
    )


class IngestedDocument(Base):
    __tablename__ = "ingested_documents"

    id = Column(Integer, primary_key=True)
    community_id = Column(String(100), nullable=False)
    filename = Column(String(500), nullable=False)
    file_type = Column(String(50))
    status = Column(String(20), default=DocumentStatus.pending.value, nullable=False)
    error_message = Column(Text)
    processed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_ingested_documents_community", "community_id"),
    )


@event.listens_for(Base, "before_insert", propagate=True)
def _validate_community_id_before_insert(mapper, connection, target) -> None:
    if not hasattr(target, "community_id"):
        return
    community_id = getattr(target, "community_id", None)
    if not community_id or not str(community_id).strip():
        raise ValidationIssue(
            "community_id is required for this operation",
            field="community_id",
            error_type="required",
        )


__all__ = [
    "Base",
    "NodeType",
    "DocumentStatus",
    "HyperNode",
    "Hyperedge",
    "HyperedgeMembership",
    "HypergraphConfig",
    "RssFeed",
    "IngestedDocument",
    "utcnow",
    "as_utc",
]
