"""
Hyperedge store: memories connecting any number of nodes.

Memberships are always written in the same transaction as their edge.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from sqlalchemy import case, desc, exists, func, or_

import hypermem.config as config
from hypermem.db import dialect_insert
from hypermem.errors import ValidationIssue
from hypermem.models import Hyperedge, HyperedgeMembership, HyperNode, utcnow
from hypermem.services.graph_shared import (
    _validate_importance,
    _validate_limit,
    _validate_list,
    _validate_metadata,
    _validate_node_type,
    _validate_number,
    _validate_optional_text,
    _validate_required_text,
    _validate_string_list,
    serialize_edges_with_members,
    ACCESS_BOOST_FACTOR,
    MAX_KEYWORDS,
    MAX_MEMBERSHIPS,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TEXT_LENGTH,
    RETRIEVAL_MIN_URGENCY,
    URGENCY_CEILING,
    logger,
)
from hypermem.services.node_registry import upsert_node

DEFAULT_IMPORTANCE = 1.0
DEFAULT_MEMBERSHIP_WEIGHT = 1.0


def _validate_membership(item: Any, index: int) -> None:
    field = f"memberships[{index}]"
    if not isinstance(item, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    entity = item.get("entity")
    if not isinstance(entity, dict):
        raise ValidationIssue(
            f"{field}.entity must be an object",
            field=f"{field}.entity",
            error_type="invalid_type",
        )
    _validate_required_text(entity.get("key"), f"{field}.entity.key", MAX_SHORT_TEXT_LENGTH)
    _validate_node_type(entity.get("type"), f"{field}.entity.type")
    _validate_required_text(entity.get("name"), f"{field}.entity.name", MAX_SHORT_TEXT_LENGTH)
    _validate_metadata(entity.get("metadata"), f"{field}.entity.metadata")
    _validate_required_text(item.get("role"), f"{field}.role", 50)
    if item.get("weight") is not None:
        _validate_number(item["weight"], f"{field}.weight", 0.0)
    _validate_metadata(item.get("metadata"), f"{field}.metadata")


def validate_edge_data(community_id: str, edge_data: dict) -> None:
    _validate_required_text(community_id, "community_id", 100)
    if not isinstance(edge_data, dict):
        raise ValidationIssue("edge_data must be an object", field="edge_data", error_type="invalid_type")
    _validate_required_text(edge_data.get("channel_id"), "channel_id", 100)
    _validate_required_text(edge_data.get("edge_type"), "edge_type", 50)
    _validate_required_text(edge_data.get("summary"), "summary", MAX_SUMMARY_LENGTH)
    _validate_optional_text(edge_data.get("content"), "content", MAX_TEXT_LENGTH)
    if edge_data.get("importance") is not None:
        _validate_importance(edge_data["importance"])
    _validate_optional_text(edge_data.get("source_message_id"), "source_message_id", 100)
    _validate_metadata(edge_data.get("metadata"), "metadata")
    memberships = edge_data.get("memberships") or []
    _validate_list(memberships, "memberships", MAX_MEMBERSHIPS)
    for index, item in enumerate(memberships):
        _validate_membership(item, index)


def create_hyperedge(db, community_id: str, edge_data: dict) -> int:
    """
    Create one memory with all of its memberships, all-or-nothing.

    Nodes named by the memberships are registered (or refreshed) inside the
    same transaction; exact duplicate memberships are ignored.

    Raises:
        ValidationIssue: malformed edge_data (nothing is written)
        Exception: any storage failure, after the transaction is rolled back
    """
    validate_edge_data(community_id, edge_data)

    importance = edge_data.get("importance")
    if importance is None:
        importance = DEFAULT_IMPORTANCE
    importance = float(importance)

    try:
        edge = Hyperedge(
            community_id=community_id,
            channel_id=edge_data["channel_id"],
            edge_type=edge_data["edge_type"],
            summary=edge_data["summary"],
            content=edge_data.get("content"),
            importance=importance,
            urgency=min(importance, URGENCY_CEILING),
            access_count=0,
            source_message_id=edge_data.get("source_message_id"),
            metadata_=edge_data.get("metadata") or {},
        )
        db.add(edge)
        db.flush()

        membership_table = HyperedgeMembership.__table__
        for item in edge_data.get("memberships") or []:
            entity = item["entity"]
            node_id = upsert_node(
                db,
                community_id,
                entity["key"],
                entity["type"],
                entity["name"],
                entity.get("metadata"),
            )
            weight = item.get("weight")
            stmt = dialect_insert(db, membership_table).values(
                {
                    "hyperedge_id": edge.id,
                    "node_id": node_id,
                    "role": item["role"],
                    "weight": DEFAULT_MEMBERSHIP_WEIGHT if weight is None else float(weight),
                    "metadata": item.get("metadata") or {},
                    "created_at": utcnow(),
                }
            ).on_conflict_do_nothing(index_elements=["hyperedge_id", "node_id", "role"])
            db.execute(stmt)

        db.commit()
    except Exception:
        db.rollback()
        logger.error(
            "Failed to create hyperedge",
            extra={
                "community_id": community_id,
                "channel_id": edge_data.get("channel_id"),
                "edge_type": edge_data.get("edge_type"),
            },
        )
        raise

    logger.debug(
        "hyperedge_created",
        extra={"community_id": community_id, "hyperedge_id": edge.id},
    )
    return edge.id


def get_hyperedge(db, edge_id: int) -> Optional[dict]:
    edge = db.query(Hyperedge).filter(Hyperedge.id == edge_id).first()
    if edge is None:
        return None
    return serialize_edges_with_members(db, [edge])[0]


def delete_hyperedges(db, community_id: str, edge_ids: Sequence[int]) -> int:
    """Delete edges and their memberships. Nodes are never touched."""
    ids = list(edge_ids)
    if not ids:
        return 0
    try:
        scoped_ids = [
            row[0]
            for row in db.query(Hyperedge.id)
            .filter(Hyperedge.community_id == community_id, Hyperedge.id.in_(ids))
            .all()
        ]
        if not scoped_ids:
            return 0
        db.query(HyperedgeMembership).filter(
            HyperedgeMembership.hyperedge_id.in_(scoped_ids)
        ).delete(synchronize_session=False)
        deleted = db.query(Hyperedge).filter(
            Hyperedge.id.in_(scoped_ids)
        ).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return deleted or 0


def edges_involving_node_clause(external_key: str, node_type: Optional[str] = None):
    """EXISTS clause: the edge has a member node with the given key."""
    clause = exists().where(
        HyperedgeMembership.hyperedge_id == Hyperedge.id,
        HyperedgeMembership.node_id == HyperNode.id,
        HyperNode.external_key == external_key,
    )
    if node_type is not None:
        clause = clause.where(HyperNode.node_type == node_type)
    return clause


def query_by_node(
    db,
    community_id: str,
    node_key: str,
    min_urgency: float = RETRIEVAL_MIN_URGENCY,
    limit: int = 20,
    node_type: Optional[str] = None,
) -> list[dict]:
    _validate_required_text(node_key, "node_key", MAX_SHORT_TEXT_LENGTH)
    _validate_number(min_urgency, "min_urgency", 0.0)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    if node_type is not None:
        _validate_node_type(node_type)

    edges = (
        db.query(Hyperedge)
        .filter(
            Hyperedge.community_id == community_id,
            Hyperedge.urgency >= min_urgency,
            edges_involving_node_clause(node_key, node_type),
        )
        .order_by(desc(Hyperedge.urgency), desc(Hyperedge.id))
        .limit(limit)
        .all()
    )
    return serialize_edges_with_members(db, edges)


def _like_pattern(keyword: str) -> str:
    escaped = keyword.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def lexical_search(
    db,
    community_id: str,
    keywords: Sequence[str],
    limit: int = 10,
    min_urgency: float = RETRIEVAL_MIN_URGENCY,
) -> list[dict]:
    """
    Keyword search over summaries, content and member node names.

    Ranked by a weighted sum where importance outweighs urgency, so
    foundational facts are not buried by recent chatter.
    """
    _validate_string_list(keywords, "keywords", MAX_KEYWORDS, MAX_SHORT_TEXT_LENGTH)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    terms = [keyword.strip() for keyword in keywords or [] if keyword and keyword.strip()]
    if not terms:
        return []

    conditions = []
    for term in terms:
        pattern = _like_pattern(term)
        conditions.append(func.lower(Hyperedge.summary).like(pattern, escape="\\"))
        conditions.append(func.lower(func.coalesce(Hyperedge.content, "")).like(pattern, escape="\\"))
        conditions.append(
            exists().where(
                HyperedgeMembership.hyperedge_id == Hyperedge.id,
                HyperedgeMembership.node_id == HyperNode.id,
                func.lower(HyperNode.display_name).like(pattern, escape="\\"),
            )
        )

    score = (
        config.LEXICAL_IMPORTANCE_WEIGHT * Hyperedge.importance
        + config.LEXICAL_URGENCY_WEIGHT * Hyperedge.urgency
    )
    edges = (
        db.query(Hyperedge)
        .filter(
            Hyperedge.community_id == community_id,
            Hyperedge.urgency > min_urgency,
            or_(*conditions),
        )
        .order_by(desc(score), desc(Hyperedge.id))
        .limit(limit)
        .all()
    )
    return serialize_edges_with_members(db, edges)


def record_access(
    db,
    edge_id: int,
    boost_factor: float = ACCESS_BOOST_FACTOR,
    ceiling: float = URGENCY_CEILING,
) -> bool:
    """
    Count one retrieval of an edge and boost its urgency, clamped to ceiling.

    Done in a single UPDATE so concurrent accesses never lose increments.
    Returns False when the edge no longer exists (e.g. pruned meanwhile).
    """
    boosted = Hyperedge.urgency * boost_factor
    try:
        updated = (
            db.query(Hyperedge)
            .filter(Hyperedge.id == edge_id)
            .update(
                {
                    Hyperedge.access_count: Hyperedge.access_count + 1,
                    Hyperedge.last_accessed_at: utcnow(),
                    Hyperedge.urgency: case((boosted > ceiling, ceiling), else_=boosted),
                },
                synchronize_session=False,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return bool(updated)


def find_edges_by_metadata(db, community_id: str, key: str, value: Any) -> list[Hyperedge]:
    """Edges whose metadata[key] equals value (integers compared as integers)."""
    if isinstance(value, int) and not isinstance(value, bool):
        condition = Hyperedge.metadata_[key].as_integer() == value
    else:
        condition = Hyperedge.metadata_[key].as_string() == str(value)
    return (
        db.query(Hyperedge)
        .filter(Hyperedge.community_id == community_id, condition)
        .order_by(Hyperedge.id)
        .all()
    )
