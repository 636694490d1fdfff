import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from hypermem.errors import ValidationIssue
from hypermem.models import Hyperedge, HyperedgeMembership, HyperNode
from hypermem.services import hyperedge_store
from hypermem.services.hyperedge_store import (
    create_hyperedge,
    delete_hyperedges,
    find_edges_by_metadata,
    get_hyperedge,
    lexical_search,
    query_by_node,
    record_access,
)


def _member(key, node_type="topic", role="topic", weight=None, name=None):
    item = {"entity": {"key": key, "type": node_type, "name": name or key.title()}, "role": role}
    if weight is not None:
        item["weight"] = weight
    return item


def _edge(summary, memberships=None, **extra):
    data = {
        "channel_id": "c1",
        "edge_type": "fact",
        "summary": summary,
        "memberships": memberships or [],
    }
    data.update(extra)
    return data


def test_create_hyperedge_with_memberships(db_session):
    edge_id = create_hyperedge(
        db_session,
        "g1",
        _edge(
            "Alice and Bob went hiking",
            [
                _member("alice", "user", "participant", 1.0, "Alice"),
                _member("bob", "user", "participant", 0.9, "Bob"),
                _member("hiking", weight=0.3),
                _member("hiking", weight=0.3),
            ],
            importance=2.5,
            source_message_id="m-1",
            metadata={"source": "chat"},
        ),
    )

    edge = get_hyperedge(db_session, edge_id)
    assert edge["summary"] == "Alice and Bob went hiking"
    assert edge["importance"] == 2.5
    assert edge["urgency"] == 2.5
    assert edge["access_count"] == 0
    assert edge["metadata"] == {"source": "chat"}
    assert [member["key"] for member in edge["members"]] == ["alice", "bob", "hiking"]
    assert db_session.query(HyperedgeMembership).count() == 3
    assert db_session.query(HyperNode).count() == 3


def test_importance_defaults_and_urgency_is_capped(db_session):
    default_id = create_hyperedge(db_session, "g1", _edge("plain"))
    zero_id = create_hyperedge(db_session, "g1", _edge("trivial", importance=0))
    capped_id = create_hyperedge(db_session, "g1", _edge("huge", importance=10.0))

    assert get_hyperedge(db_session, default_id)["importance"] == 1.0
    assert get_hyperedge(db_session, zero_id)["urgency"] == 0.0
    assert get_hyperedge(db_session, capped_id)["urgency"] == 10.0


def test_validation_failure_writes_nothing(db_session):
    with pytest.raises(ValidationIssue) as exc_info:
        create_hyperedge(
            db_session,
            "g1",
            _edge("bad member", [{"entity": {"key": "x", "type": "planet", "name": "X"}, "role": "topic"}]),
        )
    assert exc_info.value.field == "memberships[0].entity.type"

    with pytest.raises(ValidationIssue):
        create_hyperedge(db_session, "g1", {"channel_id": "c1", "edge_type": "fact"})

    assert db_session.query(Hyperedge).count() == 0
    assert db_session.query(HyperNode).count() == 0


def test_failure_mid_memberships_rolls_back_everything(db_session, monkeypatch):
    real_upsert = hyperedge_store.upsert_node
    calls = {"count": 0}

    def flaky_upsert(db, *args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("storage went away")
        return real_upsert(db, *args, **kwargs)

    monkeypatch.setattr(hyperedge_store, "upsert_node", flaky_upsert)

    with pytest.raises(RuntimeError):
        create_hyperedge(
            db_session,
            "g1",
            _edge("doomed", [_member("alice", "user", "participant"), _member("bob", "user", "participant")]),
        )

    assert db_session.query(Hyperedge).count() == 0
    assert db_session.query(HyperedgeMembership).count() == 0
    assert db_session.query(HyperNode).count() == 0


def test_query_by_node_orders_by_urgency(db_session):
    low = create_hyperedge(db_session, "g1", _edge("low", [_member("rust")], importance=0.5))
    high = create_hyperedge(
        db_session,
        "g1",
        _edge("high", [_member("rust", weight=0.2), _member("alice", "user", "participant", 0.9)], importance=3.0),
    )
    create_hyperedge(db_session, "g1", _edge("faded", [_member("rust")], importance=0.05))
    create_hyperedge(db_session, "g2", _edge("elsewhere", [_member("rust")], importance=5.0))

    results = query_by_node(db_session, "g1", "rust")
    assert [edge["id"] for edge in results] == [high, low]
    assert [member["key"] for member in results[0]["members"]] == ["alice", "rust"]

    everything = query_by_node(db_session, "g1", "rust", min_urgency=0.0)
    assert len(everything) == 3


def test_lexical_search_matches_text_and_member_names(db_session):
    foundational = create_hyperedge(
        db_session, "g1", _edge("The server runs on Postgres", importance=3.0)
    )
    chatter = create_hyperedge(db_session, "g1", _edge("Someone said postgres is slow", importance=1.0))
    db_session.query(Hyperedge).filter(Hyperedge.id == chatter).update({Hyperedge.urgency: 5.0})
    db_session.query(Hyperedge).filter(Hyperedge.id == foundational).update({Hyperedge.urgency: 0.5})
    db_session.commit()

    by_member = create_hyperedge(
        db_session, "g1", _edge("Weekly sync", [_member("pg", name="PostgreSQL team")], importance=0.2)
    )
    create_hyperedge(db_session, "g1", _edge("Unrelated chatter"))

    results = lexical_search(db_session, "g1", ["POSTGRES"])
    assert [edge["id"] for edge in results] == [chatter, foundational, by_member]
    assert lexical_search(db_session, "g1", []) == []


def test_lexical_search_ranking_weights(db_session):
    durable = create_hyperedge(db_session, "g1", _edge("deploy checklist", importance=4.0))
    recent = create_hyperedge(db_session, "g1", _edge("deploy went fine today", importance=1.0))
    db_session.query(Hyperedge).filter(Hyperedge.id == recent).update({Hyperedge.urgency: 6.0})
    db_session.query(Hyperedge).filter(Hyperedge.id == durable).update({Hyperedge.urgency: 1.0})
    db_session.commit()

    results = lexical_search(db_session, "g1", ["deploy"])
    assert [edge["id"] for edge in results] == [durable, recent]


def test_record_access_is_bounded(db_session):
    edge_id = create_hyperedge(db_session, "g1", _edge("popular", importance=2.0))

    assert record_access(db_session, edge_id) is True
    db_session.expire_all()
    edge = db_session.get(Hyperedge, edge_id)
    assert edge.urgency == pytest.approx(2.2)
    assert edge.access_count == 1
    assert edge.last_accessed_at is not None

    previous = edge.urgency
    for _ in range(40):
        record_access(db_session, edge_id)
        db_session.expire_all()
        current = db_session.get(Hyperedge, edge_id).urgency
        assert previous <= current <= 10.0
        previous = current

    edge = db_session.get(Hyperedge, edge_id)
    assert edge.urgency == pytest.approx(10.0)
    assert edge.access_count == 41


def test_record_access_on_missing_edge(db_session):
    assert record_access(db_session, 9999) is False


def test_delete_hyperedges_keeps_nodes(db_session):
    edge_id = create_hyperedge(db_session, "g1", _edge("to delete", [_member("alice", "user", "participant")]))
    keep_id = create_hyperedge(db_session, "g1", _edge("to keep", [_member("alice", "user", "participant")]))

    assert delete_hyperedges(db_session, "g2", [edge_id]) == 0
    assert delete_hyperedges(db_session, "g1", [edge_id]) == 1

    assert get_hyperedge(db_session, edge_id) is None
    assert get_hyperedge(db_session, keep_id) is not None
    assert db_session.query(HyperedgeMembership).count() == 1
    assert db_session.query(HyperNode).count() == 1


def test_find_edges_by_metadata(db_session):
    rss = create_hyperedge(
        db_session, "g1", _edge("feed item", metadata={"source": "rss", "url": "https://example.com/a"})
    )
    doc = create_hyperedge(db_session, "g1", _edge("doc part", metadata={"source": "upload", "document_id": 7}))

    assert [edge.id for edge in find_edges_by_metadata(db_session, "g1", "url", "https://example.com/a")] == [rss]
    assert [edge.id for edge in find_edges_by_metadata(db_session, "g1", "document_id", 7)] == [doc]
    assert find_edges_by_metadata(db_session, "g2", "url", "https://example.com/a") == []


@pytest.mark.parametrize("importance", [float("nan"), float("inf")])
def test_non_finite_importance_is_rejected(db_session, importance):
    with pytest.raises(ValidationIssue) as exc_info:
        create_hyperedge(db_session, "g1", _edge("broken number", importance=importance))

    assert exc_info.value.field == "importance"
    assert exc_info.value.error_type == "invalid_value"
    assert db_session.query(Hyperedge).count() == 0
