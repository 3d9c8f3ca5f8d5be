"""Initial schema: users, clubs, events, linked_events, audit_log

Revision ID: 4c2e7a91b0d3
Revises:
Create Date: 2026-10-19 10:12:31.514208

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4c2e7a91b0d3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _json_list(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB, nullable=False, server_default="[]")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()
    )


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(254), nullable=False, unique=True),
        sa.Column("display_name", sa.String(100), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="all"),
        _json_list("member_of"),
        sa.Column("oris_id", sa.String(20), nullable=True),
        _timestamp("created_at"),
    )

    # --- clubs ---
    op.create_table(
        "clubs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), nullable=True),
        sa.Column("short_name", sa.String(20), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("oris_id", sa.String(20), nullable=True),
        sa.Column("country", sa.String(3), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
    )

    # --- events ---
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("oris_id", sa.String(100), nullable=True),
        _json_list("organised_by"),
        _json_list("linked_to"),
        sa.Column("map_name", sa.String(200), nullable=True),
        sa.Column("loc_place", sa.String(200), nullable=True),
        _json_list("loc_regions"),
        sa.Column("loc_country", sa.String(3), nullable=True),
        sa.Column("loc_lat", sa.Float, nullable=True),
        sa.Column("loc_long", sa.Float, nullable=True),
        _json_list("loc_corner_sw"),
        _json_list("loc_corner_nw"),
        _json_list("loc_corner_ne"),
        _json_list("loc_corner_se"),
        _json_list("types"),
        _json_list("tags"),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("results", sa.String(500), nullable=True),
        _json_list("runners"),
        sa.Column("active", sa.Boolean, nullable=True, server_default=sa.true()),
        sa.Column("version_id", sa.Integer, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "ix_events_date_name", "events", ["date", "name"],
        unique=True,
        postgresql_where=sa.text("active IS TRUE"),
    )
    op.create_index(
        "ix_events_oris_id", "events", ["oris_id"],
        unique=True,
        postgresql_where=sa.text("oris_id IS NOT NULL"),
    )

    # --- linked_events ---
    op.create_table(
        "linked_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(300), nullable=False, unique=True),
        _json_list("includes"),
        sa.Column("version_id", sa.Integer, nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(36), nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        _timestamp("timestamp"),
    )
    op.create_index(
        "ix_audit_log_target", "audit_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    op.drop_index("ix_audit_log_target", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("linked_events")
    op.drop_index("ix_events_oris_id", table_name="events")
    op.drop_index("ix_events_date_name", table_name="events")
    op.drop_table("events")
    op.drop_table("clubs")
    op.drop_table("users")
