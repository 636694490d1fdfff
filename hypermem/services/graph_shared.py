"""
Shared helpers and configuration for hypergraph services.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from functools import wraps
from typing import Callable, Iterable, Optional

from sqlalchemy import desc

import hypermem.config as config
from hypermem.errors import ValidationIssue
from hypermem.models import Hyperedge, HyperedgeMembership, HyperNode, as_utc
from hypermem.validators import (
    validate_required_text as _validate_required_text,
    validate_optional_text as _validate_optional_text,
    validate_limit as _validate_limit,
    validate_list as _validate_list,
    validate_string_list as _validate_string_list,
    validate_metadata as _validate_metadata,
    validate_node_type as _validate_node_type,
    validate_number as _validate_number,
    validate_importance as _validate_importance,
)

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

INGESTION_CHANNEL_ID = config.INGESTION_CHANNEL_ID

MAX_RESULT_LIMIT = config.MAX_RESULT_LIMIT
MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_SUMMARY_LENGTH = config.MAX_SUMMARY_LENGTH
MAX_SHORT_TEXT_LENGTH = config.MAX_SHORT_TEXT_LENGTH
MAX_URL_LENGTH = config.MAX_URL_LENGTH
MAX_MEMBERSHIPS = config.MAX_MEMBERSHIPS
MAX_KEYWORDS = config.MAX_KEYWORDS

URGENCY_CEILING = config.URGENCY_CEILING
ACCESS_BOOST_FACTOR = config.ACCESS_BOOST_FACTOR
RETRIEVAL_MIN_URGENCY = config.RETRIEVAL_MIN_URGENCY


# =============================================================================
# Metadata
# =============================================================================

def merge_metadata(existing: Optional[dict], incoming: Optional[dict]) -> dict:
    """Shallow merge where incoming keys win; empty input never erases."""
    merged = dict(existing or {})
    if incoming:
        merged.update(incoming)
    return merged


# =============================================================================
# Serialization
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def serialize_node(node: HyperNode, memory_count: Optional[int] = None) -> dict:
    payload = {
        "id": node.id,
        "community_id": node.community_id,
        "key": node.external_key,
        "type": node.node_type,
        "name": node.display_name,
        "metadata": node.metadata_ or {},
        "created_at": _iso(node.created_at),
        "updated_at": _iso(node.updated_at),
    }
    if memory_count is not None:
        payload["memory_count"] = int(memory_count)
    return payload


def serialize_edge(edge: Hyperedge, members: Optional[list[dict]] = None) -> dict:
    payload = {
        "id": edge.id,
        "community_id": edge.community_id,
        "channel_id": edge.channel_id,
        "edge_type": edge.edge_type,
        "summary": edge.summary,
        "content": edge.content,
        "importance": edge.importance,
        "urgency": edge.urgency,
        "access_count": edge.access_count,
        "last_accessed_at": _iso(edge.last_accessed_at),
        "source_message_id": edge.source_message_id,
        "metadata": edge.metadata_ or {},
        "created_at": _iso(edge.created_at),
        "updated_at": _iso(edge.updated_at),
    }
    if members is not None:
        payload["members"] = members
    return payload


def load_members(db, edge_ids: Iterable[int]) -> dict[int, list[dict]]:
    """Membership lists per edge, heaviest first, joined at query time."""
    ids = list(set(edge_ids))
    if not ids:
        return {}
    rows = (
        db.query(HyperedgeMembership, HyperNode)
        .join(HyperNode, HyperedgeMembership.node_id == HyperNode.id)
        .filter(HyperedgeMembership.hyperedge_id.in_(ids))
        .order_by(desc(HyperedgeMembership.weight), HyperedgeMembership.id)
        .all()
    )
    members: dict[int, list[dict]] = defaultdict(list)
    for membership, node in rows:
        members[membership.hyperedge_id].append(
            {
                "node_id": node.id,
                "key": node.external_key,
                "type": node.node_type,
                "name": node.display_name,
                "role": membership.role,
                "weight": membership.weight,
            }
        )
    return dict(members)


def serialize_edges_with_members(db, edges: list[Hyperedge]) -> list[dict]:
    members = load_members(db, [edge.id for edge in edges])
    return [serialize_edge(edge, members.get(edge.id, [])) for edge in edges]


# =============================================================================
# Tool wrappers
# =============================================================================

def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)
