import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from hypermem.db import DB
from hypermem.errors import ValidationIssue
from hypermem.models import HyperNode
from hypermem.services.hyperedge_store import create_hyperedge
from hypermem.services.node_registry import (
    find_node,
    find_or_create_node,
    list_all_nodes,
    list_nodes_by_type,
)


def test_find_or_create_node_is_idempotent(db_session):
    first = find_or_create_node(
        db_session, "g1", "u-alice", "user", "Alice", {"timezone": "UTC", "pronouns": "she/her"}
    )
    second = find_or_create_node(db_session, "g1", "u-alice", "user", "Alice", {})

    assert first == second
    assert db_session.query(HyperNode).count() == 1
    node = find_node(db_session, "g1", "u-alice", "user")
    assert node["name"] == "Alice"
    assert node["metadata"] == {"timezone": "UTC", "pronouns": "she/her"}


def test_reregistration_refreshes_name_and_merges_metadata(db_session):
    node_id = find_or_create_node(db_session, "g1", "u-bob", "user", "bob", {"timezone": "UTC", "lang": "en"})
    again = find_or_create_node(db_session, "g1", "u-bob", "user", "Bobby", {"lang": "fr"})

    assert again == node_id
    node = find_node(db_session, "g1", "u-bob", "user")
    assert node["name"] == "Bobby"
    assert node["metadata"] == {"timezone": "UTC", "lang": "fr"}


def test_identity_includes_type_and_community(db_session):
    as_user = find_or_create_node(db_session, "g1", "rust", "user", "rust")
    as_topic = find_or_create_node(db_session, "g1", "rust", "topic", "Rust")
    other_community = find_or_create_node(db_session, "g2", "rust", "topic", "Rust")

    assert len({as_user, as_topic, other_community}) == 3
    assert find_node(db_session, "g1", "missing", "topic") is None


def test_find_or_create_node_validates_inputs(db_session):
    with pytest.raises(ValidationIssue) as exc_info:
        find_or_create_node(db_session, "g1", "x", "planet", "Mars")
    assert exc_info.value.field == "type"

    with pytest.raises(ValidationIssue):
        find_or_create_node(db_session, "g1", "", "topic", "Empty")
    assert db_session.query(HyperNode).count() == 0


def _edge(summary, members):
    return {
        "channel_id": "c1",
        "edge_type": "observation",
        "summary": summary,
        "memberships": [
            {"entity": {"key": key, "type": node_type, "name": key.title()}, "role": "participant"}
            for key, node_type in members
        ],
    }


def test_list_nodes_orderings(db_session):
    create_hyperedge(db_session, "g1", _edge("one", [("alice", "user"), ("hiking", "topic")]))
    create_hyperedge(db_session, "g1", _edge("two", [("alice", "user"), ("bob", "user")]))
    create_hyperedge(db_session, "g1", _edge("three", [("alice", "user")]))

    by_participation = list_nodes_by_type(db_session, "g1", "user", order_by="participation")
    assert [node["key"] for node in by_participation] == ["alice", "bob"]
    assert by_participation[0]["memory_count"] == 3
    assert by_participation[1]["memory_count"] == 1

    everything = list_all_nodes(db_session, "g1")
    assert [node["type"] for node in everything] == ["topic", "user", "user"]

    limited = list_all_nodes(db_session, "g1", order_by="participation", limit=1)
    assert [node["key"] for node in limited] == ["alice"]

    with pytest.raises(ValidationIssue):
        list_all_nodes(db_session, "g1", order_by="alphabetical")


def _register(name: str) -> int:
    db = DB.SessionLocal()
    try:
        return find_or_create_node(db, "g1", "shared-key", "topic", name)
    finally:
        db.close()


def test_concurrent_first_registration_yields_one_node(server_db, db_session):
    with ThreadPoolExecutor(max_workers=4) as executor:
        ids = list(executor.map(_register, ["Shared A", "Shared B", "Shared C", "Shared D"]))

    assert len(set(ids)) == 1
    assert db_session.query(HyperNode).filter(HyperNode.external_key == "shared-key").count() == 1
