from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from valuechain.models.base import Base, JSONBlob, TimestampMixin, UUIDMixin


class ValueChainMap(Base, UUIDMixin, TimestampMixin):
    """A named, organization-scoped container of process nodes and edges.

    ``updated_at`` doubles as the map's "last modified" marker and is touched
    by every node/edge mutation, not only by edits of the map row itself.
    """

    __tablename__ = "value_chain_maps"

    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    segment: Mapped[str | None] = mapped_column(String(200))
    # Viewport zoom/offset; opaque to the engine
    layout: Mapped[dict | None] = mapped_column(JSONBlob, default=dict)

    def __repr__(self) -> str:
        return f"<ValueChainMap(id={self.id}, name={self.name!r})>"
