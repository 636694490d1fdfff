import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from sqlalchemy import inspect

import hypermem.config as config
from hypermem.db import DB, dispose_db, init_db


def test_service_imports():
    import hypermem.services.ingestion  # noqa: F401
    import hypermem.services.memory_tools  # noqa: F401


def test_init_db_runs_migrations(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "DB_BACKEND", "sqlite")
    monkeypatch.setattr(config, "DATABASE_URL", f"sqlite:///{tmp_path / 'migrated.sqlite'}")
    monkeypatch.setattr(config, "AUTO_MIGRATE_ON_STARTUP", True)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    try:
        init_db()
        tables = set(inspect(DB.engine).get_table_names())
        assert {
            "hyper_nodes",
            "hyperedges",
            "hyperedge_memberships",
            "hypergraph_config",
            "rss_feeds",
            "ingested_documents",
        } <= tables

        dispose_db()
        init_db()
        assert DB.SessionLocal is not None
    finally:
        dispose_db()
        DB.engine = previous_engine
        DB.SessionLocal = previous_session


def test_invalid_config_is_reported(monkeypatch):
    monkeypatch.setattr(config, "DB_BACKEND", "mysql")
    monkeypatch.setattr(config, "DATABASE_URL", None)

    with pytest.raises(RuntimeError, match="DB_BACKEND"):
        config.validate_and_prepare_config()
