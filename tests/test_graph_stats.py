import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from hypermem.errors import ValidationIssue
from hypermem.services.graph_stats import channel_memories, export_community, graph_view, hypergraph_stats
from hypermem.services.hyperedge_store import create_hyperedge


def _member(key, node_type="user", role="participant"):
    return {"entity": {"key": key, "type": node_type, "name": key.title()}, "role": role}


@pytest.fixture
def graph(db_session):
    edges = {
        "hike": create_hyperedge(
            db_session,
            "g1",
            {
                "channel_id": "c1",
                "edge_type": "fact",
                "summary": "Alice likes hiking",
                "importance": 2.0,
                "memberships": [_member("alice"), _member("hiking", "topic", "topic")],
            },
        ),
        "chat": create_hyperedge(
            db_session,
            "g1",
            {
                "channel_id": "c1",
                "edge_type": "observation",
                "summary": "Alice talked with Bob",
                "memberships": [_member("alice"), _member("bob")],
            },
        ),
        "trail": create_hyperedge(
            db_session,
            "g1",
            {
                "channel_id": "c2",
                "edge_type": "fact",
                "summary": "The ridge trail is closed",
                "importance": 3.0,
                "memberships": [_member("hiking", "topic", "topic")],
            },
        ),
    }
    create_hyperedge(
        db_session,
        "g2",
        {"channel_id": "c1", "edge_type": "fact", "summary": "elsewhere", "memberships": [_member("carol")]},
    )
    return edges


def test_hypergraph_stats(db_session, graph):
    stats = hypergraph_stats(db_session, "g1")

    assert stats["total_nodes"] == 3
    assert stats["total_edges"] == 3
    assert stats["nodes_by_type"] == [{"type": "user", "count": 2}, {"type": "topic", "count": 1}]
    assert stats["edges_by_type"] == [
        {"edge_type": "fact", "count": 2, "avg_urgency": 2.5},
        {"edge_type": "observation", "count": 1, "avg_urgency": 1.0},
    ]
    assert [(item["key"], item["memory_count"]) for item in stats["top_entities"]] == [
        ("alice", 2),
        ("hiking", 2),
        ("bob", 1),
    ]
    assert stats["channels"] == [{"channel_id": "c1", "count": 2}, {"channel_id": "c2", "count": 1}]


def test_stats_for_empty_community(db_session):
    stats = hypergraph_stats(db_session, "nobody")
    assert stats["total_nodes"] == 0
    assert stats["total_edges"] == 0
    assert stats["top_entities"] == []


def test_graph_view(db_session, graph):
    view = graph_view(db_session, "g1", limit=2)
    assert [edge["id"] for edge in view["edges"]] == [graph["trail"], graph["hike"]]
    assert [node["key"] for node in view["nodes"]] == ["hiking", "alice"]
    assert [member["key"] for member in view["edges"][1]["connections"]] == ["alice", "hiking"]

    channel_view = graph_view(db_session, "g1", channel_id="c1")
    assert {edge["id"] for edge in channel_view["edges"]} == {graph["hike"], graph["chat"]}
    assert [node["key"] for node in channel_view["nodes"]] == ["hiking", "alice", "bob"]

    with pytest.raises(ValidationIssue):
        graph_view(db_session, "g1", limit=1001)


def test_channel_memories(db_session, graph):
    assert [edge["id"] for edge in channel_memories(db_session, "g1", "c1")] == [graph["hike"], graph["chat"]]
    assert [edge["id"] for edge in channel_memories(db_session, "g1", "c1", min_urgency=1.5)] == [graph["hike"]]
    assert channel_memories(db_session, "g2", "c2") == []


def test_export_community(db_session, graph):
    dump = export_community(db_session, "g1")

    assert [edge["id"] for edge in dump["edges"]] == sorted(graph.values())
    assert {node["key"] for node in dump["nodes"]} == {"alice", "hiking", "bob"}
    assert len(dump["memberships"]) == 5
    assert {item["hyperedge_id"] for item in dump["memberships"]} == set(graph.values())
