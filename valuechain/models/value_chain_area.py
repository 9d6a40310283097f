from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from valuechain.models.base import Base, TimestampMixin, UUIDMixin


class ValueChainArea(Base, UUIDMixin, TimestampMixin):
    """Ordered swimlane grouping nodes of one map (sales, operations, ...).

    Nodes point at an area through ``ValueChainNode.area_id``; deleting the
    area only clears that pointer.
    """

    __tablename__ = "value_chain_areas"

    map_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20))
    icon: Mapped[str | None] = mapped_column(String(50))
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ValueChainArea(id={self.id}, name={self.name!r})>"
