from __future__ import annotations

import enum
import uuid

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from valuechain.models.base import Base, JSONBlob, TimestampMixin, UUIDMixin


class NodeType(str, enum.Enum):
    PROCESS = "process"
    DECISION = "decision"
    START = "start"
    END = "end"
    ANNOTATION = "annotation"


class ValueChainNode(Base, UUIDMixin, TimestampMixin):
    """A single step or decision point in a value chain map.

    The four ROI metrics are always stored populated (defaults are filled on
    write). ``procedure_id``, ``agent_id`` and ``department_id`` are weak
    references to records owned by other subsystems, so they carry no foreign
    key: removing the referenced record clears the field, never the node.
    """

    __tablename__ = "value_chain_nodes"

    map_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("value_chain_maps.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=NodeType.PROCESS.value)
    label: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    position_x: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    style: Mapped[dict | None] = mapped_column(JSONBlob)

    # ROI metrics, each 0-10
    time_intensity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    capital_intensity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    complexity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    automation_potential: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    # Cost baseline, round-tripped for reporting
    estimated_hours: Mapped[float | None] = mapped_column(Float)
    estimated_cost: Mapped[float | None] = mapped_column(Float)
    current_fte: Mapped[float | None] = mapped_column(Float)

    procedure_id: Mapped[str | None] = mapped_column(String(100), index=True)
    agent_id: Mapped[str | None] = mapped_column(String(100), index=True)
    department_id: Mapped[str | None] = mapped_column(String(100), index=True)

    # Swimlane within the same map; cleared when the area is deleted
    area_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("value_chain_areas.id", ondelete="SET NULL"), index=True
    )

    # Bumped on every metric or link change; guards those fields against lost updates
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (Index("ix_value_chain_nodes_map_type", "map_id", "type"),)

    def __repr__(self) -> str:
        return f"<ValueChainNode(id={self.id}, type={self.type}, label={self.label!r})>"
