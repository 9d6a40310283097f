"""add value chain areas: value_chain_areas table and value_chain_nodes.area_id

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    from sqlalchemy import inspect as sa_inspect

    conn = op.get_bind()
    inspector = sa_inspect(conn)

    if not inspector.has_table("value_chain_areas"):
        op.create_table(
            "value_chain_areas",
            sa.Column("id", sa.Uuid(), primary_key=True),
            sa.Column(
                "map_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
                nullable=False,
                index=True,
            ),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("color", sa.String(20), nullable=True),
            sa.Column("icon", sa.String(50), nullable=True),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    node_columns = {c["name"] for c in inspector.get_columns("value_chain_nodes")}
    if "area_id" not in node_columns:
        op.add_column(
            "value_chain_nodes",
            sa.Column(
                "area_id",
                sa.Uuid(),
                sa.ForeignKey("value_chain_areas.id", ondelete="SET NULL"),
                nullable=True,
            ),
        )
        op.create_index("ix_value_chain_nodes_area_id", "value_chain_nodes", ["area_id"])


def downgrade() -> None:
    op.drop_index("ix_value_chain_nodes_area_id", table_name="value_chain_nodes")
    op.drop_column("value_chain_nodes", "area_id")
    op.drop_table("value_chain_areas")
