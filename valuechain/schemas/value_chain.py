from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from valuechain.models.value_chain_node import NodeType

# ---------------------------------------------------------------------------
# Display blobs: a few recognized fields, unknown keys preserved verbatim
# ---------------------------------------------------------------------------


class MapLayout(BaseModel):
    model_config = ConfigDict(extra="allow")

    zoom: float = 1.0
    x: float = 0.0
    y: float = 0.0


class NodeStyle(BaseModel):
    model_config = ConfigDict(extra="allow")

    background: str | None = None
    color: str | None = None
    border: str | None = None
    width: float | None = None
    height: float | None = None


class EdgeStyle(BaseModel):
    model_config = ConfigDict(extra="allow")

    stroke: str | None = None
    animated: bool | None = None


def dump_blob(blob: BaseModel | dict | None) -> dict | None:
    """Serialize a display blob exactly as the client sent it."""
    if blob is None:
        return None
    if isinstance(blob, dict):
        return dict(blob)
    return blob.model_dump(exclude_unset=True)


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


# ---------------------------------------------------------------------------
# Metrics and links
# ---------------------------------------------------------------------------


class MetricsIn(BaseModel):
    """Raw metric input. Omitted fields stay unset, so partial updates are possible."""

    model_config = ConfigDict(populate_by_name=True)

    time_intensity: Any = Field(
        default=None, validation_alias=AliasChoices("time_intensity", "timeIntensity")
    )
    capital_intensity: Any = Field(
        default=None, validation_alias=AliasChoices("capital_intensity", "capitalIntensity")
    )
    complexity: Any = None
    automation_potential: Any = Field(
        default=None, validation_alias=AliasChoices("automation_potential", "automationPotential")
    )

    def supplied(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class LinksIn(BaseModel):
    """Weak references. ``null`` clears a link; an omitted key leaves it alone."""

    procedure_id: str | None = None
    agent_id: str | None = None
    department_id: str | None = None

    def supplied(self) -> dict[str, str | None]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class NodeCreate(BaseModel):
    id: str | None = None  # client-side id, only honoured by map creation / graph save
    type: NodeType = NodeType.PROCESS
    label: str = Field(min_length=1, max_length=500)
    description: str | None = None
    position: Position = Position()
    style: NodeStyle | None = None
    metrics: MetricsIn | None = None
    links: LinksIn | None = None
    estimated_hours: float | None = None
    estimated_cost: float | None = None
    current_fte: float | None = None
    area_id: str | None = None


class NodeUpdate(BaseModel):
    type: NodeType | None = None
    label: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    position: Position | None = None
    style: NodeStyle | None = None
    metrics: MetricsIn | None = None
    links: LinksIn | None = None
    estimated_hours: float | None = None
    estimated_cost: float | None = None
    current_fte: float | None = None
    area_id: str | None = None
    # Present only so a reparenting attempt can be refused explicitly
    map_id: str | None = None
    version: int | None = None


class EdgeCreate(BaseModel):
    id: str | None = None
    source_id: str = Field(validation_alias=AliasChoices("source_id", "source"))
    target_id: str = Field(validation_alias=AliasChoices("target_id", "target"))
    label: str | None = None
    style: EdgeStyle | None = None


class MapCreate(BaseModel):
    name: str = Field(min_length=1, max_length=500)
    organization_id: str = Field(min_length=1, max_length=100)
    description: str | None = None
    segment: str | None = None
    layout: MapLayout | None = None
    nodes: list[NodeCreate] | None = None
    edges: list[EdgeCreate] | None = None


class MapUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    segment: str | None = None
    layout: MapLayout | None = None


class AreaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    color: str | None = Field(default=None, max_length=20)
    icon: str | None = Field(default=None, max_length=50)
    order: int | None = None


class AreaUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    color: str | None = Field(default=None, max_length=20)
    icon: str | None = Field(default=None, max_length=50)
    order: int | None = None


class GraphNodeIn(NodeCreate):
    id: str
    version: int | None = None


class GraphSave(BaseModel):
    nodes: list[GraphNodeIn] = []
    edges: list[EdgeCreate] = []
    layout: MapLayout | None = None


class RoiScoreRequest(MetricsIn):
    pass


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class RoiOut(BaseModel):
    score: int
    category: str
    effort: float


class NodeOut(BaseModel):
    id: str
    map_id: str
    type: str
    label: str
    description: str | None = None
    position: Position
    style: dict | None = None
    metrics: dict[str, int]
    roi: RoiOut
    procedure_id: str | None = None
    agent_id: str | None = None
    department_id: str | None = None
    area_id: str | None = None
    estimated_hours: float | None = None
    estimated_cost: float | None = None
    current_fte: float | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EdgeOut(BaseModel):
    id: str
    map_id: str
    source_id: str
    target_id: str
    label: str | None = None
    style: dict | None = None


class AreaOut(BaseModel):
    id: str
    map_id: str
    name: str
    color: str | None = None
    icon: str | None = None
    order: int
    node_count: int = 0


class MapSummary(BaseModel):
    node_count: int
    edge_count: int
    area_count: int = 0
    process_steps: int
    procedure_links: int
    agent_links: int
    department_links: int
    automation_rate: int
    total_time_intensity: int | None = None
    total_capital_intensity: int | None = None
    average_complexity: float | None = None
    automation_score: float | None = None
    average_roi_score: float | None = None


class MapOut(BaseModel):
    id: str
    name: str
    description: str | None = None
    organization_id: str
    segment: str | None = None
    layout: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MapListItem(MapOut):
    summary: MapSummary


class MapDetail(MapOut):
    nodes: list[NodeOut]
    edges: list[EdgeOut]
    areas: list[AreaOut] = []
    summary: MapSummary


class PriorityItem(BaseModel):
    node_id: str
    map_id: str
    map_name: str
    label: str
    type: str
    metrics: dict[str, int]
    roi: RoiOut
    procedure_id: str | None = None
    agent_id: str | None = None


class CoverageGap(BaseModel):
    node_id: str
    label: str
    type: str


class CoverageReport(BaseModel):
    total_steps: int
    covered_steps: int
    coverage: int
    gaps: list[CoverageGap]
