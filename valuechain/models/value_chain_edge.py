from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from valuechain.models.base import Base, JSONBlob, TimestampMixin, UUIDMixin


class ValueChainEdge(Base, UUIDMixin, TimestampMixin):
    """Directed process-flow link between two nodes of the same map."""

    __tablename__ = "value_chain_edges"

    map_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("value_chain_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("value_chain_nodes.id", ondelete="CASCADE"),
        nullable=False,
    )
    label: Mapped[str | None] = mapped_column(String(500))
    style: Mapped[dict | None] = mapped_column(JSONBlob)

    __table_args__ = (
        Index("ix_value_chain_edges_source", "source_id"),
        Index("ix_value_chain_edges_target", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<ValueChainEdge(id={self.id}, {self.source_id} -> {self.target_id})>"
