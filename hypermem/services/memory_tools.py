"""
Conversation-facing memory tools.

Each tool owns its database session and returns a JSON-ready dict.
Validation problems come back as {"status": "error", ...} payloads.
"""

from __future__ import annotations

from typing import List, Optional

from hypermem.db import DB
from hypermem.services.decay_service import get_decay_config, list_communities, run_decay_for_community
from hypermem.services.graph_shared import (
    _validate_limit,
    _validate_optional_text,
    _validate_required_text,
    service_tool,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TEXT_LENGTH,
    RETRIEVAL_MIN_URGENCY,
    logger,
)
from hypermem.services.graph_stats import hypergraph_stats
from hypermem.services.hyperedge_store import create_hyperedge, get_hyperedge, lexical_search, query_by_node
from hypermem.services.message_extractor import ChatMessage, Mention, extract_message_memory
from hypermem.services.retrieval import prompt_memories
from hypermem.services.text_chunks import extract_keywords


def _session():
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    return DB.SessionLocal()


def _mentions(items: Optional[List[dict]], field: str) -> list[Mention]:
    mentions = []
    for item in items or []:
        if not isinstance(item, dict):
            raise ValueError(f"{field} entries must be objects with id and name")
        _validate_required_text(item.get("id"), f"{field}.id", MAX_SHORT_TEXT_LENGTH)
        _validate_required_text(item.get("name"), f"{field}.name", MAX_SHORT_TEXT_LENGTH)
        mentions.append(Mention(id=item["id"], name=item["name"]))
    return mentions


@service_tool
def memory_create(community_id: str, edge_data: dict) -> dict:
    """
    Store one memory and the entities it connects.

    Args:
        community_id: Owning community
        edge_data: channel_id, edge_type, summary, memberships, and optional
            content, importance, source_message_id, metadata

    Returns:
        The stored memory with its members
    """
    _validate_required_text(community_id, "community_id", 100)
    db = _session()
    try:
        edge_id = create_hyperedge(db, community_id, edge_data)
        return {
            "status": "stored",
            "id": edge_id,
            "memory": get_hyperedge(db, edge_id),
        }
    finally:
        db.close()


@service_tool
def memory_context(
    community_id: str,
    channel_id: str,
    user_id: Optional[str] = None,
    limit: int = 10,
    record_access: bool = True,
) -> dict:
    """Memories for the prompt of one conversational turn; surfaced memories get an access boost."""
    _validate_required_text(community_id, "community_id", 100)
    _validate_required_text(channel_id, "channel_id", 100)
    _validate_optional_text(user_id, "user_id", MAX_SHORT_TEXT_LENGTH)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    db = _session()
    try:
        memories = prompt_memories(
            db,
            community_id,
            channel_id,
            user_id,
            contextual_limit=limit,
            user_fact_limit=limit,
            global_limit=limit,
            record=record_access,
        )
        return {
            "status": "ok",
            "count": sum(len(items) for items in memories.values()),
            **memories,
        }
    finally:
        db.close()


@service_tool
def memory_search(
    community_id: str,
    query: Optional[str] = None,
    keywords: Optional[List[str]] = None,
    node_key: Optional[str] = None,
    node_type: Optional[str] = None,
    limit: int = 10,
    min_urgency: float = RETRIEVAL_MIN_URGENCY,
) -> dict:
    """
    Search memories by entity or by keywords.

    With node_key, returns memories touching that entity. Otherwise keywords
    (or keywords pulled from query) are matched against memory text and
    member names.
    """
    _validate_required_text(community_id, "community_id", 100)
    _validate_optional_text(query, "query", MAX_TEXT_LENGTH)
    db = _session()
    try:
        if node_key:
            results = query_by_node(
                db,
                community_id,
                node_key,
                min_urgency=min_urgency,
                limit=limit,
                node_type=node_type,
            )
            mode = "node"
        else:
            terms = keywords if keywords is not None else extract_keywords(query or "")
            if not terms:
                raise ValueError("Provide node_key, keywords, or a query with searchable words")
            results = lexical_search(db, community_id, terms, limit=limit, min_urgency=min_urgency)
            mode = "lexical"
        return {
            "status": "ok",
            "mode": mode,
            "count": len(results),
            "results": results,
        }
    finally:
        db.close()


@service_tool
def memory_record_message(
    community_id: str,
    message_id: str,
    channel_id: str,
    author_id: str,
    author_name: str,
    content: str,
    mentioned_users: Optional[List[dict]] = None,
    mentioned_channels: Optional[List[dict]] = None,
    mentioned_roles: Optional[List[dict]] = None,
) -> dict:
    """
    Remember what a chat message says, if anything.

    Storage problems are logged and reported, never raised: losing one
    message's memory must not break the conversation.
    """
    _validate_required_text(community_id, "community_id", 100)
    _validate_required_text(message_id, "message_id", 100)
    _validate_required_text(channel_id, "channel_id", 100)
    _validate_required_text(author_id, "author_id", MAX_SHORT_TEXT_LENGTH)
    _validate_required_text(author_name, "author_name", MAX_SHORT_TEXT_LENGTH)
    _validate_optional_text(content, "content", MAX_TEXT_LENGTH)
    message = ChatMessage(
        message_id=message_id,
        channel_id=channel_id,
        author_id=author_id,
        author_name=author_name,
        content=content or "",
        mentioned_users=_mentions(mentioned_users, "mentioned_users"),
        mentioned_channels=_mentions(mentioned_channels, "mentioned_channels"),
        mentioned_roles=_mentions(mentioned_roles, "mentioned_roles"),
    )

    db = _session()
    try:
        if not get_decay_config(db, community_id).extraction_enabled:
            return {"status": "skipped", "reason": "extraction_disabled"}
        edge_data = extract_message_memory(message)
        if edge_data is None:
            return {"status": "skipped", "reason": "nothing_to_remember"}
        try:
            edge_id = create_hyperedge(db, community_id, edge_data)
        except Exception as exc:
            logger.warning(
                f"Failed to record message memory: {exc}",
                extra={"community_id": community_id, "message_id": message_id},
            )
            return {"status": "failed", "reason": "storage_error"}
        return {
            "status": "stored",
            "id": edge_id,
            "edge_type": edge_data["edge_type"],
            "summary": edge_data["summary"],
        }
    finally:
        db.close()


@service_tool
def memory_stats(community_id: str) -> dict:
    _validate_required_text(community_id, "community_id", 100)
    db = _session()
    try:
        return {"status": "ok", **hypergraph_stats(db, community_id)}
    finally:
        db.close()


@service_tool
def memory_decay(community_id: Optional[str] = None) -> dict:
    """Run decay and pruning now, for one community or for all of them."""
    _validate_optional_text(community_id, "community_id", 100)
    if community_id:
        communities = [community_id]
    else:
        db = _session()
        try:
            communities = list_communities(db)
        finally:
            db.close()

    results = [run_decay_for_community(cid) for cid in communities]
    return {
        "status": "ok",
        "communities": len(results),
        "updated": sum(item["updated"] for item in results),
        "pruned": sum(item["pruned"] for item in results),
        "results": results,
    }
