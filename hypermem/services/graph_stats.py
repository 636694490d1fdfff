"""
Read-only statistics and export views of a community's hypergraph.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import desc, distinct, func

from hypermem.models import Hyperedge, HyperedgeMembership, HyperNode
from hypermem.services.graph_shared import (
    _iso,
    _validate_limit,
    _validate_number,
    load_members,
    serialize_edge,
    serialize_edges_with_members,
    serialize_node,
    MAX_RESULT_LIMIT,
)

TOP_ENTITY_LIMIT = 20
TOP_CHANNEL_LIMIT = 10
GRAPH_VIEW_MAX_LIMIT = 1000


def hypergraph_stats(db, community_id: str) -> dict:
    node_count = func.count(HyperNode.id)
    nodes_by_type = [
        {"type": node_type, "count": int(count)}
        for node_type, count in db.query(HyperNode.node_type, node_count)
        .filter(HyperNode.community_id == community_id)
        .group_by(HyperNode.node_type)
        .order_by(desc(node_count), HyperNode.node_type)
        .all()
    ]

    edge_count = func.count(Hyperedge.id)
    edges_by_type = [
        {
            "edge_type": edge_type,
            "count": int(count),
            "avg_urgency": round(float(avg_urgency or 0.0), 4),
        }
        for edge_type, count, avg_urgency in db.query(
            Hyperedge.edge_type, edge_count, func.avg(Hyperedge.urgency)
        )
        .filter(Hyperedge.community_id == community_id)
        .group_by(Hyperedge.edge_type)
        .order_by(desc(edge_count), Hyperedge.edge_type)
        .all()
    ]

    memory_count = func.count(distinct(HyperedgeMembership.hyperedge_id))
    top_entities = [
        {"id": node_id, "key": key, "type": node_type, "name": name, "memory_count": int(count)}
        for node_id, key, node_type, name, count in db.query(
            HyperNode.id,
            HyperNode.external_key,
            HyperNode.node_type,
            HyperNode.display_name,
            memory_count,
        )
        .join(HyperedgeMembership, HyperedgeMembership.node_id == HyperNode.id)
        .filter(HyperNode.community_id == community_id)
        .group_by(HyperNode.id, HyperNode.external_key, HyperNode.node_type, HyperNode.display_name)
        .order_by(desc(memory_count), HyperNode.id)
        .limit(TOP_ENTITY_LIMIT)
        .all()
    ]

    channels = [
        {"channel_id": channel_id, "count": int(count)}
        for channel_id, count in db.query(Hyperedge.channel_id, edge_count)
        .filter(Hyperedge.community_id == community_id)
        .group_by(Hyperedge.channel_id)
        .order_by(desc(edge_count), Hyperedge.channel_id)
        .limit(TOP_CHANNEL_LIMIT)
        .all()
    ]

    return {
        "community_id": community_id,
        "nodes_by_type": nodes_by_type,
        "edges_by_type": edges_by_type,
        "top_entities": top_entities,
        "channels": channels,
        "total_nodes": sum(item["count"] for item in nodes_by_type),
        "total_edges": sum(item["count"] for item in edges_by_type),
    }


def graph_view(db, community_id: str, channel_id: Optional[str] = None, limit: int = 100) -> dict:
    """Most urgent edges with their connections, plus every node they touch."""
    _validate_limit(limit, "limit", GRAPH_VIEW_MAX_LIMIT)
    query = db.query(Hyperedge).filter(Hyperedge.community_id == community_id)
    if channel_id:
        query = query.filter(Hyperedge.channel_id == channel_id)
    edges = query.order_by(desc(Hyperedge.urgency), desc(Hyperedge.id)).limit(limit).all()

    members = load_members(db, [edge.id for edge in edges])
    edge_payload = [
        {
            "id": edge.id,
            "edge_type": edge.edge_type,
            "summary": edge.summary,
            "urgency": edge.urgency,
            "channel_id": edge.channel_id,
            "connections": members.get(edge.id, []),
        }
        for edge in edges
    ]

    node_ids = {member["node_id"] for connections in members.values() for member in connections}
    nodes = []
    if node_ids:
        nodes = [
            serialize_node(node)
            for node in db.query(HyperNode)
            .filter(HyperNode.id.in_(node_ids))
            .order_by(HyperNode.node_type, HyperNode.display_name)
            .all()
        ]
    return {"nodes": nodes, "edges": edge_payload}


def channel_memories(
    db,
    community_id: str,
    channel_id: str,
    min_urgency: float = 0.0,
    limit: int = 50,
) -> list[dict]:
    _validate_number(min_urgency, "min_urgency", 0.0)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    edges = (
        db.query(Hyperedge)
        .filter(
            Hyperedge.community_id == community_id,
            Hyperedge.channel_id == channel_id,
            Hyperedge.urgency >= min_urgency,
        )
        .order_by(desc(Hyperedge.urgency), desc(Hyperedge.id))
        .limit(limit)
        .all()
    )
    return serialize_edges_with_members(db, edges)


def export_community(db, community_id: str) -> dict:
    """Full dump of one community: nodes, edges and memberships."""
    nodes = (
        db.query(HyperNode)
        .filter(HyperNode.community_id == community_id)
        .order_by(HyperNode.id)
        .all()
    )
    edges = (
        db.query(Hyperedge)
        .filter(Hyperedge.community_id == community_id)
        .order_by(Hyperedge.id)
        .all()
    )
    memberships = (
        db.query(HyperedgeMembership)
        .join(Hyperedge, HyperedgeMembership.hyperedge_id == Hyperedge.id)
        .filter(Hyperedge.community_id == community_id)
        .order_by(HyperedgeMembership.id)
        .all()
    )
    return {
        "community_id": community_id,
        "nodes": [serialize_node(node) for node in nodes],
        "edges": [serialize_edge(edge) for edge in edges],
        "memberships": [
            {
                "id": membership.id,
                "hyperedge_id": membership.hyperedge_id,
                "node_id": membership.node_id,
                "role": membership.role,
                "weight": membership.weight,
                "metadata": membership.metadata_ or {},
                "created_at": _iso(membership.created_at),
            }
            for membership in memberships
        ],
    }
