import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")

from hypermem.models import Hyperedge, HyperNode
from hypermem.services import memory_tools


def _store_observation(text: str) -> dict:
    return memory_tools.memory_create(
        "concurrency",
        {
            "channel_id": "c1",
            "edge_type": "observation",
            "summary": text,
            "memberships": [
                {"entity": {"key": "alice", "type": "user", "name": "Alice"}, "role": "participant"},
                {"entity": {"key": "locks", "type": "topic", "name": "locks"}, "role": "topic"},
            ],
        },
    )


def test_memory_create_concurrency(server_db, db_session):
    texts = ["Concurrent observation 1", "Concurrent observation 2", "Concurrent observation 3"]
    with ThreadPoolExecutor(max_workers=3) as executor:
        results = list(executor.map(_store_observation, texts))

    assert all(result["status"] == "stored" for result in results)
    assert db_session.query(Hyperedge).count() == 3
    assert db_session.query(HyperNode).filter(HyperNode.community_id == "concurrency").count() == 2

    found = memory_tools.memory_search("concurrency", node_key="alice", node_type="user", limit=10)
    assert found["count"] == 3
