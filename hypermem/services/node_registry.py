"""
Node registry: typed, community-scoped entities of the hypergraph.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import desc, distinct, func

from hypermem.db import dialect_insert
from hypermem.errors import ValidationIssue
from hypermem.models import HyperedgeMembership, HyperNode, utcnow
from hypermem.services.graph_shared import (
    _validate_limit,
    _validate_metadata,
    _validate_node_type,
    _validate_required_text,
    merge_metadata,
    serialize_node,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    logger,
)

NODE_ORDERINGS = ("recent", "participation")


def _validate_node_inputs(
    community_id: str,
    external_key: str,
    node_type: str,
    display_name: str,
    metadata: Optional[dict],
) -> None:
    _validate_required_text(community_id, "community_id", MAX_SHORT_TEXT_LENGTH)
    _validate_required_text(external_key, "key", MAX_SHORT_TEXT_LENGTH)
    _validate_node_type(node_type)
    _validate_required_text(display_name, "name", MAX_SHORT_TEXT_LENGTH)
    _validate_metadata(metadata, "metadata")


def upsert_node(
    db,
    community_id: str,
    external_key: str,
    node_type: str,
    display_name: str,
    metadata: Optional[dict] = None,
) -> int:
    """
    Insert or refresh a node inside the caller's transaction.

    Identity is (community_id, external_key, node_type). Concurrent first
    registrations are settled by the database's ON CONFLICT handling, so no
    duplicate rows and no errors surface. display_name is always refreshed;
    metadata is merged only when the incoming map is non-empty.

    Returns:
        The stable internal node id. Nothing is committed.
    """
    now = utcnow()
    table = HyperNode.__table__
    stmt = dialect_insert(db, table).values(
        {
            "community_id": community_id,
            "external_key": external_key,
            "node_type": node_type,
            "display_name": display_name,
            "metadata": metadata or {},
            "created_at": now,
            "updated_at": now,
        }
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["community_id", "external_key", "node_type"],
        set_={
            "display_name": stmt.excluded.display_name,
            "updated_at": now,
        },
    ).returning(table.c.id)
    node_id = db.execute(stmt).scalar_one()

    if metadata:
        # Row is locked by the upsert above for the rest of this transaction.
        node = (
            db.query(HyperNode)
            .filter(HyperNode.id == node_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        merged = merge_metadata(node.metadata_, metadata)
        if merged != (node.metadata_ or {}):
            node.metadata_ = merged
            db.flush()
    return node_id


def find_or_create_node(
    db,
    community_id: str,
    external_key: str,
    node_type: str,
    display_name: str,
    metadata: Optional[dict] = None,
) -> int:
    """Idempotent node registration; commits on success."""
    _validate_node_inputs(community_id, external_key, node_type, display_name, metadata)
    try:
        node_id = upsert_node(db, community_id, external_key, node_type, display_name, metadata)
        db.commit()
    except Exception:
        db.rollback()
        logger.error(
            "Failed to register node",
            extra={"community_id": community_id, "node_type": node_type},
        )
        raise
    return node_id


def find_node(db, community_id: str, external_key: str, node_type: str) -> Optional[dict]:
    node = (
        db.query(HyperNode)
        .filter(
            HyperNode.community_id == community_id,
            HyperNode.external_key == external_key,
            HyperNode.node_type == node_type,
        )
        .first()
    )
    return serialize_node(node) if node else None


def _list_nodes(
    db,
    community_id: str,
    node_type: Optional[str],
    order_by: str,
    limit: Optional[int],
) -> list[dict]:
    if order_by not in NODE_ORDERINGS:
        raise ValidationIssue(
            f"order_by must be one of: {', '.join(NODE_ORDERINGS)}",
            field="order_by",
            error_type="invalid_value",
        )
    if limit is not None:
        _validate_limit(limit, "limit", MAX_RESULT_LIMIT)

    memory_count = func.count(distinct(HyperedgeMembership.hyperedge_id)).label("memory_count")
    query = (
        db.query(HyperNode, memory_count)
        .outerjoin(HyperedgeMembership, HyperedgeMembership.node_id == HyperNode.id)
        .filter(HyperNode.community_id == community_id)
    )
    if node_type is not None:
        query = query.filter(HyperNode.node_type == node_type)
    query = query.group_by(HyperNode.id)

    if order_by == "participation":
        query = query.order_by(desc(memory_count), desc(HyperNode.created_at), HyperNode.id)
    elif node_type is None:
        query = query.order_by(HyperNode.node_type, desc(HyperNode.created_at), desc(HyperNode.id))
    else:
        query = query.order_by(desc(HyperNode.created_at), desc(HyperNode.id))

    if limit is not None:
        query = query.limit(limit)
    return [serialize_node(node, count) for node, count in query.all()]


def list_nodes_by_type(
    db,
    community_id: str,
    node_type: str,
    order_by: str = "recent",
    limit: Optional[int] = None,
) -> list[dict]:
    _validate_node_type(node_type)
    return _list_nodes(db, community_id, node_type, order_by, limit)


def list_all_nodes(
    db,
    community_id: str,
    order_by: str = "recent",
    limit: Optional[int] = None,
) -> list[dict]:
    return _list_nodes(db, community_id, None, order_by, limit)
