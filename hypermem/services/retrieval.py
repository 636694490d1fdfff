"""
Retrieval ranker: the three query shapes used to build prompt context.

Every shape hides memories at or below RETRIEVAL_MIN_URGENCY, so decayed
memories disappear from retrieval before they are physically pruned.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import case, desc

from hypermem.models import Hyperedge, NodeType
from hypermem.services.graph_shared import (
    _validate_limit,
    _validate_required_text,
    serialize_edges_with_members,
    ACCESS_BOOST_FACTOR,
    INGESTION_CHANNEL_ID,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    RETRIEVAL_MIN_URGENCY,
    URGENCY_CEILING,
    logger,
)
from hypermem.services.hyperedge_store import edges_involving_node_clause, record_access

FACT_EDGE_TYPE = "fact"


def contextual(
    db,
    community_id: str,
    channel_id: str,
    focus_user_id: Optional[str],
    limit: int = 10,
) -> list[dict]:
    """Channel-scoped memories, those involving the focus user first."""
    _validate_required_text(channel_id, "channel_id", 100)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)

    query = db.query(Hyperedge).filter(
        Hyperedge.community_id == community_id,
        Hyperedge.channel_id == channel_id,
        Hyperedge.urgency > RETRIEVAL_MIN_URGENCY,
    )
    if focus_user_id:
        involves_user = case(
            (edges_involving_node_clause(focus_user_id, NodeType.user.value), 1),
            else_=0,
        )
        query = query.order_by(desc(involves_user), desc(Hyperedge.urgency), desc(Hyperedge.id))
    else:
        query = query.order_by(desc(Hyperedge.urgency), desc(Hyperedge.id))
    return serialize_edges_with_members(db, query.limit(limit).all())


def user_facts(db, community_id: str, user_id: str, limit: int = 10) -> list[dict]:
    """Facts about a user, shared across every channel of the community."""
    _validate_required_text(user_id, "user_id", MAX_SHORT_TEXT_LENGTH)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    edges = (
        db.query(Hyperedge)
        .filter(
            Hyperedge.community_id == community_id,
            Hyperedge.edge_type == FACT_EDGE_TYPE,
            Hyperedge.urgency > RETRIEVAL_MIN_URGENCY,
            edges_involving_node_clause(user_id, NodeType.user.value),
        )
        .order_by(desc(Hyperedge.urgency), desc(Hyperedge.id))
        .limit(limit)
        .all()
    )
    return serialize_edges_with_members(db, edges)


def global_knowledge(db, community_id: str, limit: int = 10) -> list[dict]:
    """Facts that came from feeds or documents rather than conversation."""
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    edges = (
        db.query(Hyperedge)
        .filter(
            Hyperedge.community_id == community_id,
            Hyperedge.channel_id == INGESTION_CHANNEL_ID,
            Hyperedge.edge_type == FACT_EDGE_TYPE,
            Hyperedge.urgency > RETRIEVAL_MIN_URGENCY,
        )
        .order_by(desc(Hyperedge.urgency), desc(Hyperedge.id))
        .limit(limit)
        .all()
    )
    return serialize_edges_with_members(db, edges)


def record_surfaced(
    db,
    edges: Iterable[dict],
    boost_factor: float = ACCESS_BOOST_FACTOR,
    ceiling: float = URGENCY_CEILING,
) -> int:
    """Record an access for every surfaced edge; returns how many still existed."""
    recorded = 0
    for edge in edges:
        if record_access(db, edge["id"], boost_factor=boost_factor, ceiling=ceiling):
            recorded += 1
    return recorded


def prompt_memories(
    db,
    community_id: str,
    channel_id: str,
    user_id: Optional[str],
    contextual_limit: int = 10,
    user_fact_limit: int = 10,
    global_limit: int = 10,
    record: bool = True,
) -> dict:
    """
    Gather everything the prompt step needs for one conversational turn.

    An edge surfacing in more than one shape is reported once, in the first
    shape that returned it, and its access is recorded once.
    """
    shapes = [
        ("contextual", contextual(db, community_id, channel_id, user_id, contextual_limit)),
        ("user_facts", user_facts(db, community_id, user_id, user_fact_limit) if user_id else []),
        ("global_knowledge", global_knowledge(db, community_id, global_limit)),
    ]

    seen: set[int] = set()
    result: dict[str, list[dict]] = {}
    for name, edges in shapes:
        unique = []
        for edge in edges:
            if edge["id"] in seen:
                continue
            seen.add(edge["id"])
            unique.append(edge)
        result[name] = unique

    if record:
        surfaced = [edge for edges in result.values() for edge in edges]
        recorded = record_surfaced(db, surfaced)
        logger.debug(
            "memories_surfaced",
            extra={
                "community_id": community_id,
                "channel_id": channel_id,
                "surfaced": len(surfaced),
                "recorded": recorded,
            },
        )
    return result
