"""Create hypergraph memory tables.

Revision ID: 0001_hypergraph
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_hypergraph"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "hyper_nodes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("community_id", sa.String(length=100), nullable=False),
        sa.Column("external_key", sa.String(length=255), nullable=False),
        sa.Column("node_type", sa.String(length=20), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "community_id", "external_key", "node_type", name="uq_hyper_nodes_identity"
        ),
    )
    op.create_index(
        "ix_hyper_nodes_community_type",
        "hyper_nodes",
        ["community_id", "node_type"],
    )

    op.create_table(
        "hyperedges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("community_id", sa.String(length=100), nullable=False),
        sa.Column("channel_id", sa.String(length=100), nullable=False),
        sa.Column("edge_type", sa.String(length=50), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("content", sa.Text()),
        sa.Column("importance", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("urgency", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("access_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True)),
        sa.Column("source_message_id", sa.String(length=100)),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("importance >= 0", name="check_hyperedge_importance"),
        sa.CheckConstraint("urgency >= 0", name="check_hyperedge_urgency"),
    )
    op.create_index(
        "ix_hyperedges_community_channel",
        "hyperedges",
        ["community_id", "channel_id"],
    )
    op.create_index(
        "ix_hyperedges_community_type",
        "hyperedges",
        ["community_id", "edge_type"],
    )
    op.create_index("ix_hyperedges_urgency", "hyperedges", ["urgency"])
    op.create_index("ix_hyperedges_created_at", "hyperedges", ["created_at"])

    op.create_table(
        "hyperedge_memberships",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "hyperedge_id",
            sa.Integer(),
            sa.ForeignKey("hyperedges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.Integer(), sa.ForeignKey("hyper_nodes.id"), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "hyperedge_id", "node_id", "role", name="uq_hyperedge_memberships_edge_node_role"
        ),
    )
    op.create_index(
        "ix_hyperedge_memberships_node",
        "hyperedge_memberships",
        ["node_id"],
    )

    op.create_table(
        "hypergraph_config",
        sa.Column("community_id", sa.String(length=100), primary_key=True),
        sa.Column("extraction_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("decay_rate", sa.Float(), nullable=False, server_default="0.1"),
        sa.Column("access_boost", sa.Float(), nullable=False, server_default="0.05"),
        sa.Column("min_urgency_threshold", sa.Float(), nullable=False, server_default="0.1"),
        sa.Column("prune_min_age_days", sa.Float(), nullable=False, server_default="30"),
        sa.Column("max_memories_per_node", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "rss_feeds",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("community_id", sa.String(length=100), nullable=False),
        sa.Column("url", sa.String(length=1000), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("interval_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("interval_minutes > 0", name="check_rss_feed_interval"),
    )
    op.create_index("ix_rss_feeds_community", "rss_feeds", ["community_id"])

    op.create_table(
        "ingested_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("community_id", sa.String(length=100), nullable=False),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("file_type", sa.String(length=50)),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_ingested_documents_community",
        "ingested_documents",
        ["community_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_ingested_documents_community", table_name="ingested_documents")
    op.drop_table("ingested_documents")
    op.drop_index("ix_rss_feeds_community", table_name="rss_feeds")
    op.drop_table("rss_feeds")
    op.drop_table("hypergraph_config")
    op.drop_index("ix_hyperedge_memberships_node", table_name="hyperedge_memberships")
    op.drop_table("hyperedge_memberships")
    op.drop_index("ix_hyperedges_created_at", table_name="hyperedges")
    op.drop_index("ix_hyperedges_urgency", table_name="hyperedges")
    op.drop_index("ix_hyperedges_community_type", table_name="hyperedges")
    op.drop_index("ix_hyperedges_community_channel", table_name="hyperedges")
    op.drop_table("hyperedges")
    op.drop_index("ix_hyper_nodes_community_type", table_name="hyper_nodes")
    op.drop_table("hyper_nodes")
