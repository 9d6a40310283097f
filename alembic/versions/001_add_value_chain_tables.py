"""add value chain tables: value_chain_maps, value_chain_nodes, value_chain_edges

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect

    conn = op.get_bind()
    inspector = sa_inspect(conn)

    if not inspector.has_table("value_chain_maps"):
        op.create_table(
            "value_chain_maps",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column("name", sa.String(500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("organization_id", sa.String(100), nullable=False, index=True),
            sa.Column("segment", sa.String(200), nullable=True),
            sa.Column("layout", postgresql.JSONB(), nullable=True),
            *_timestamps(),
        )

    if not inspector.has_table("value_chain_nodes"):
        op.create_table(
            "value_chain_nodes",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column(
                "map_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
                nullable=False,
                index=True,
            ),
            sa.Column("type", sa.String(20), nullable=False, server_default="process"),
            sa.Column("label", sa.String(500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("position_x", sa.Float(), nullable=False, server_default="0"),
            sa.Column("position_y", sa.Float(), nullable=False, server_default="0"),
            sa.Column("style", postgresql.JSONB(), nullable=True),
            sa.Column("time_intensity", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("capital_intensity", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("complexity", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("automation_potential", sa.Integer(), nullable=False, server_default="5"),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("estimated_cost", sa.Float(), nullable=True),
            sa.Column("current_fte", sa.Float(), nullable=True),
            sa.Column("procedure_id", sa.String(100), nullable=True, index=True),
            sa.Column("agent_id", sa.String(100), nullable=True, index=True),
            sa.Column("department_id", sa.String(100), nullable=True, index=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
        )
        op.create_index("ix_value_chain_nodes_map_type", "value_chain_nodes", ["map_id", "type"])

    if not inspector.has_table("value_chain_edges"):
        op.create_table(
            "value_chain_edges",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column(
                "map_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
                nullable=False,
                index=True,
            ),
            sa.Column(
                "source_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_nodes.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "target_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_nodes.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("label", sa.String(500), nullable=True),
            sa.Column("style", postgresql.JSONB(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_value_chain_edges_source", "value_chain_edges", ["source_id"])
        op.create_index("ix_value_chain_edges_target", "value_chain_edges", ["target_id"])


def downgrade() -> None:
    op.drop_table("value_chain_edges")
    op.drop_table("value_chain_nodes")
    op.drop_table("value_chain_maps")
