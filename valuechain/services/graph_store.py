"""Persistence of value chain maps, nodes and edges.

Structural rules live here so that no caller can leave a graph inconsistent:

* a node belongs to exactly one map and is never reparented;
* both endpoints of an edge are nodes of the edge's own map;
* deleting a node deletes every edge that touches it (and nothing else);
* deletes are idempotent;
* a node's area is one of its own map's areas; deleting an area only
  ungroups its nodes;
* every mutation touches the owning map's ``updated_at``.

Metric values and link ids are protected by a compare-and-swap on
``ValueChainNode.version``; position, style and text fields are
last-write-wins. Functions flush but leave committing to the caller.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from valuechain.core.exceptions import Conflict, InvalidArgument, InvalidReference, NotFound
from valuechain.core.metrics import graph_mutations_total, optimistic_conflicts_total
from valuechain.models.base import utcnow
from valuechain.models.value_chain_area import ValueChainArea
from valuechain.models.value_chain_edge import ValueChainEdge
from valuechain.models.value_chain_map import ValueChainMap
from valuechain.models.value_chain_node import NodeType, ValueChainNode
from valuechain.services.entity_linker import EntityLinker, LinkKind, refs_from_columns
from valuechain.services.roi_engine import MetricSet

logger = logging.getLogger("valuechain.graph")

DEFAULT_LAYOUT = {"zoom": 1.0, "x": 0.0, "y": 0.0}

# Node attributes that may be overwritten without a version check
_PLAIN_FIELDS = ("label", "description", "style", "estimated_hours", "estimated_cost", "current_fte")


def as_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise InvalidArgument(f"{field} is not a valid id", field=field) from None


def parse_node_type(value: Any) -> str:
    try:
        return NodeType(value).value
    except ValueError:
        allowed = ", ".join(t.value for t in NodeType)
        raise InvalidArgument(f"type must be one of: {allowed}", field="type") from None


def parse_position(position: Any) -> tuple[float, float]:
    if position is None:
        return 0.0, 0.0
    if isinstance(position, dict):
        return float(position.get("x", 0.0)), float(position.get("y", 0.0))
    if hasattr(position, "x") and hasattr(position, "y"):
        return float(position.x), float(position.y)
    x, y = position
    return float(x), float(y)


async def _touch_map(db: AsyncSession, map_ids: Iterable[uuid.UUID]) -> None:
    ids = list(set(map_ids))
    if ids:
        await db.execute(
            update(ValueChainMap).where(ValueChainMap.id.in_(ids)).values(updated_at=utcnow())
        )


async def area_in_map(db: AsyncSession, map_id: uuid.UUID, area_id: Any) -> uuid.UUID | None:
    """Parse ``area_id`` and check it names an area of ``map_id``; empty means ungrouped."""
    if area_id is None or area_id == "":
        return None
    try:
        parsed = uuid.UUID(str(area_id))
    except ValueError:
        raise InvalidReference("area_id does not reference an area", field="area_id") from None
    owner = await db.scalar(select(ValueChainArea.map_id).where(ValueChainArea.id == parsed))
    if owner != map_id:
        raise InvalidReference(f"area_id is not an area of map {map_id}", field="area_id")
    return parsed


# ── Maps ──────────────────────────────────────────────────────────────


async def create_map(
    db: AsyncSession,
    name: str,
    organization_id: str,
    description: str | None = None,
    *,
    segment: str | None = None,
    layout: dict | None = None,
) -> ValueChainMap:
    name = (name or "").strip()
    if not name:
        raise InvalidArgument("Name is required", field="name")
    if not organization_id:
        raise InvalidArgument("organization_id is required", field="organization_id")

    vc_map = ValueChainMap(
        name=name,
        description=(description or "").strip() or None,
        organization_id=organization_id,
        segment=segment or None,
        layout=dict(layout) if layout is not None else dict(DEFAULT_LAYOUT),
    )
    db.add(vc_map)
    await db.flush()
    graph_mutations_total.labels(operation="create_map").inc()
    logger.info(
        "Created value chain map %s (%s)", vc_map.id, vc_map.name, extra={"map_id": str(vc_map.id)}
    )
    return vc_map


async def get_map(db: AsyncSession, map_id: uuid.UUID) -> ValueChainMap:
    vc_map = await db.get(ValueChainMap, as_uuid(map_id, "map_id"))
    if vc_map is None:
        raise NotFound("Map not found")
    return vc_map


async def list_maps(
    db: AsyncSession,
    organization_id: str | None = None,
    segment: str | None = None,
    search: str | None = None,
) -> list[ValueChainMap]:
    stmt = select(ValueChainMap)
    if organization_id:
        stmt = stmt.where(ValueChainMap.organization_id == organization_id)
    if segment and segment != "all":
        stmt = stmt.where(ValueChainMap.segment == segment)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(ValueChainMap.name.ilike(pattern), ValueChainMap.description.ilike(pattern))
        )
    result = await db.execute(stmt.order_by(ValueChainMap.updated_at.desc()))
    return list(result.scalars().all())


async def update_map(db: AsyncSession, map_id: uuid.UUID, changes: dict[str, Any]) -> ValueChainMap:
    vc_map = await get_map(db, map_id)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise InvalidArgument("Name is required", field="name")
        vc_map.name = name
    if "description" in changes:
        vc_map.description = changes["description"]
    if "segment" in changes:
        vc_map.segment = changes["segment"]
    if "layout" in changes:
        # Overwritten as a whole; the engine never merges viewport state
        vc_map.layout = dict(changes["layout"] or DEFAULT_LAYOUT)
    vc_map.updated_at = utcnow()
    await db.flush()
    graph_mutations_total.labels(operation="update_map").inc()
    return vc_map


async def delete_map(db: AsyncSession, map_id: uuid.UUID) -> None:
    """Delete a map with all of its edges and nodes. Missing maps are ignored."""
    map_id = as_uuid(map_id, "map_id")
    vc_map = await db.get(ValueChainMap, map_id)
    if vc_map is None:
        return
    edges = await db.execute(delete(ValueChainEdge).where(ValueChainEdge.map_id == map_id))
    nodes = await db.execute(delete(ValueChainNode).where(ValueChainNode.map_id == map_id))
    await db.execute(delete(ValueChainArea).where(ValueChainArea.map_id == map_id))
    await db.delete(vc_map)
    await db.flush()
    graph_mutations_total.labels(operation="delete_map").inc()
    logger.info(
        "Deleted value chain map %s (%d nodes, %d edges)",
        map_id,
        nodes.rowcount,
        edges.rowcount,
        extra={"map_id": str(map_id)},
    )


# ── Nodes ─────────────────────────────────────────────────────────────


async def get_node(db: AsyncSession, node_id: uuid.UUID) -> ValueChainNode:
    node = await db.get(ValueChainNode, as_uuid(node_id, "node_id"))
    if node is None:
        raise NotFound("Node not found")
    return node


async def list_nodes(db: AsyncSession, map_id: uuid.UUID) -> list[ValueChainNode]:
    result = await db.execute(
        select(ValueChainNode)
        .where(ValueChainNode.map_id == map_id)
        .order_by(ValueChainNode.created_at, ValueChainNode.id)
    )
    return list(result.scalars().all())


async def add_node(
    db: AsyncSession,
    linker: EntityLinker,
    map_id: uuid.UUID,
    type: str,
    label: str,
    position: Any = None,
    metrics: dict[str, Any] | None = None,
    links: dict[str, str | None] | None = None,
    *,
    node_id: uuid.UUID | None = None,
    description: str | None = None,
    style: dict | None = None,
    estimated_hours: float | None = None,
    estimated_cost: float | None = None,
    current_fte: float | None = None,
    area_id: uuid.UUID | str | None = None,
) -> ValueChainNode:
    vc_map = await get_map(db, map_id)
    node_type = parse_node_type(type)
    if not (label or "").strip():
        raise InvalidArgument("label is required", field="label")
    x, y = parse_position(position)
    metric_set = MetricSet.from_values(metrics)
    area = await area_in_map(db, vc_map.id, area_id)

    refs, _ = refs_from_columns(links or {})
    await linker.validate(refs)

    node = ValueChainNode(
        map_id=vc_map.id,
        type=node_type,
        label=label.strip(),
        description=description,
        position_x=x,
        position_y=y,
        style=style,
        estimated_hours=estimated_hours,
        estimated_cost=estimated_cost,
        current_fte=current_fte,
        area_id=area,
        version=1,
        **metric_set.as_dict(),
        **{ref.kind.column: ref.id for ref in refs},
    )
    if node_id is not None:
        node.id = as_uuid(node_id, "id")
    db.add(node)
    vc_map.updated_at = utcnow()
    await db.flush()
    graph_mutations_total.labels(operation="add_node").inc()
    logger.info(
        "Added %s node %s to map %s",
        node.type,
        node.id,
        vc_map.id,
        extra={"map_id": str(vc_map.id), "node_id": str(node.id)},
    )
    return node


async def update_node(
    db: AsyncSession,
    linker: EntityLinker,
    node_id: uuid.UUID,
    changes: dict[str, Any],
    *,
    expected_version: int | None = None,
) -> ValueChainNode:
    """Apply a partial update to a node.

    ``changes`` may hold ``type``, ``label``, ``description``, ``position``,
    ``style``, cost baseline fields, ``area_id``, ``metrics`` (partial dict) and
    ``links`` (partial dict, ``None`` clears). Keys that are absent are left
    untouched. Out-of-range metrics are clamped.

    When metrics or links actually change, the write only succeeds if the
    node is still at ``expected_version`` (or, if not given, at the version
    that was read here); otherwise :class:`Conflict` is raised.
    """
    node = await get_node(db, node_id)

    if "map_id" in changes and changes["map_id"] is not None:
        if as_uuid(changes["map_id"], "map_id") != node.map_id:
            raise InvalidArgument("Nodes cannot be moved to another map", field="map_id")

    plain: dict[str, Any] = {}
    if "type" in changes and changes["type"] is not None:
        plain["type"] = parse_node_type(changes["type"])
    if "label" in changes:
        label = (changes["label"] or "").strip()
        if not label:
            raise InvalidArgument("label is required", field="label")
        plain["label"] = label
    if "position" in changes and changes["position"] is not None:
        plain["position_x"], plain["position_y"] = parse_position(changes["position"])
    for field in _PLAIN_FIELDS:
        if field in changes and field != "label":
            plain[field] = changes[field]
    if "area_id" in changes:
        plain["area_id"] = await area_in_map(db, node.map_id, changes["area_id"])

    guarded: dict[str, Any] = {}
    if changes.get("metrics"):
        current = MetricSet.from_node(node)
        merged = current.merged(changes["metrics"])
        if merged != current:
            guarded.update(merged.as_dict())
    if changes.get("links"):
        refs, clears = refs_from_columns(changes["links"])
        refs = [ref for ref in refs if getattr(node, ref.kind.column) != ref.id]
        await linker.validate(refs)
        guarded.update({ref.kind.column: ref.id for ref in refs})
        guarded.update({kind.column: None for kind in clears if getattr(node, kind.column) is not None})

    if guarded:
        base_version = node.version if expected_version is None else expected_version
        if base_version != node.version:
            optimistic_conflicts_total.inc()
            raise Conflict(
                f"Node was modified (version {node.version}, expected {base_version}); re-fetch and retry"
            )
        result = await db.execute(
            update(ValueChainNode)
            .where(ValueChainNode.id == node.id, ValueChainNode.version == base_version)
            .values(**plain, **guarded, version=base_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            optimistic_conflicts_total.inc()
            raise Conflict("Node was modified concurrently; re-fetch and retry")
        await _touch_map(db, [node.map_id])
        await db.flush()
        await db.refresh(node)
    elif plain:
        for key, value in plain.items():
            setattr(node, key, value)
        await _touch_map(db, [node.map_id])
        await db.flush()

    graph_mutations_total.labels(operation="update_node").inc()
    return node


async def delete_node(db: AsyncSession, node_id: uuid.UUID) -> None:
    """Delete a node and every edge that touches it. Missing nodes are ignored."""
    node_id = as_uuid(node_id, "node_id")
    node = await db.get(ValueChainNode, node_id)
    if node is None:
        return
    await db.execute(
        delete(ValueChainEdge).where(
            or_(ValueChainEdge.source_id == node_id, ValueChainEdge.target_id == node_id)
        )
    )
    map_id = node.map_id
    await db.delete(node)
    await _touch_map(db, [map_id])
    await db.flush()
    graph_mutations_total.labels(operation="delete_node").inc()
    logger.info(
        "Deleted node %s from map %s",
        node_id,
        map_id,
        extra={"map_id": str(map_id), "node_id": str(node_id)},
    )


# ── Edges ─────────────────────────────────────────────────────────────


async def list_edges(db: AsyncSession, map_id: uuid.UUID) -> list[ValueChainEdge]:
    result = await db.execute(
        select(ValueChainEdge)
        .where(ValueChainEdge.map_id == map_id)
        .order_by(ValueChainEdge.created_at, ValueChainEdge.id)
    )
    return list(result.scalars().all())


async def _endpoint(db: AsyncSession, map_id: uuid.UUID, node_id: Any, field: str) -> uuid.UUID:
    try:
        parsed = uuid.UUID(str(node_id))
    except ValueError:
        raise InvalidReference(f"{field} does not reference a node", field=field) from None
    owner = await db.scalar(select(ValueChainNode.map_id).where(ValueChainNode.id == parsed))
    if owner != map_id:
        raise InvalidReference(f"{field} is not a node of map {map_id}", field=field)
    return parsed


async def add_edge(
    db: AsyncSession,
    map_id: uuid.UUID,
    source_id: Any,
    target_id: Any,
    label: str | None = None,
    *,
    style: dict | None = None,
    edge_id: uuid.UUID | None = None,
) -> ValueChainEdge:
    """Connect two nodes of ``map_id``. Self-loops and cycles are allowed."""
    vc_map = await get_map(db, map_id)
    source = await _endpoint(db, vc_map.id, source_id, "source_id")
    target = await _endpoint(db, vc_map.id, target_id, "target_id")

    edge = ValueChainEdge(map_id=vc_map.id, source_id=source, target_id=target, label=label, style=style)
    if edge_id is not None:
        edge.id = as_uuid(edge_id, "id")
    db.add(edge)
    vc_map.updated_at = utcnow()
    await db.flush()
    graph_mutations_total.labels(operation="add_edge").inc()
    return edge


async def delete_edge(db: AsyncSession, edge_id: uuid.UUID) -> None:
    edge = await db.get(ValueChainEdge, as_uuid(edge_id, "edge_id"))
    if edge is None:
        return
    map_id = edge.map_id
    await db.delete(edge)
    await _touch_map(db, [map_id])
    await db.flush()
    graph_mutations_total.labels(operation="delete_edge").inc()


# ── Areas ─────────────────────────────────────────────────────────────


async def list_areas(db: AsyncSession, map_id: uuid.UUID) -> list[ValueChainArea]:
    result = await db.execute(
        select(ValueChainArea)
        .where(ValueChainArea.map_id == map_id)
        .order_by(ValueChainArea.sort_order, ValueChainArea.created_at, ValueChainArea.id)
    )
    return list(result.scalars().all())


async def get_area(db: AsyncSession, area_id: uuid.UUID) -> ValueChainArea:
    area = await db.get(ValueChainArea, as_uuid(area_id, "area_id"))
    if area is None:
        raise NotFound("Area not found")
    return area


async def add_area(
    db: AsyncSession,
    map_id: uuid.UUID,
    name: str,
    color: str | None = None,
    icon: str | None = None,
    *,
    order: int | None = None,
) -> ValueChainArea:
    """Add a swimlane to a map. Without ``order`` it is appended after the existing ones."""
    vc_map = await get_map(db, map_id)
    name = (name or "").strip()
    if not name:
        raise InvalidArgument("Name is required", field="name")
    if order is None:
        highest = await db.scalar(
            select(func.max(ValueChainArea.sort_order)).where(ValueChainArea.map_id == vc_map.id)
        )
        order = 0 if highest is None else highest + 1

    area = ValueChainArea(map_id=vc_map.id, name=name, color=color, icon=icon, sort_order=order)
    db.add(area)
    vc_map.updated_at = utcnow()
    await db.flush()
    graph_mutations_total.labels(operation="add_area").inc()
    return area


async def update_area(db: AsyncSession, area_id: uuid.UUID, changes: dict[str, Any]) -> ValueChainArea:
    area = await get_area(db, area_id)
    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise InvalidArgument("Name is required", field="name")
        area.name = name
    if "color" in changes:
        area.color = changes["color"]
    if "icon" in changes:
        area.icon = changes["icon"]
    if changes.get("order") is not None:
        area.sort_order = int(changes["order"])
    await _touch_map(db, [area.map_id])
    await db.flush()
    graph_mutations_total.labels(operation="update_area").inc()
    return area


async def delete_area(db: AsyncSession, area_id: uuid.UUID) -> None:
    """Delete an area and ungroup its nodes. Missing areas are ignored."""
    area_id = as_uuid(area_id, "area_id")
    area = await db.get(ValueChainArea, area_id)
    if area is None:
        return
    map_id = area.map_id
    result = await db.execute(select(ValueChainNode.id).where(ValueChainNode.area_id == area_id))
    grouped = list(result.scalars().all())
    if grouped:
        await db.execute(
            update(ValueChainNode)
            .where(ValueChainNode.area_id == area_id)
            .values(area_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            select(ValueChainNode)
            .where(ValueChainNode.id.in_(grouped))
            .execution_options(populate_existing=True)
        )
    await db.delete(area)
    await _touch_map(db, [map_id])
    await db.flush()
    graph_mutations_total.labels(operation="delete_area").inc()
    logger.info(
        "Deleted area %s from map %s (%d node(s) ungrouped)",
        area_id,
        map_id,
        len(grouped),
        extra={"map_id": str(map_id)},
    )


# ── Link invalidation ─────────────────────────────────────────────────


async def invalidate_links(db: AsyncSession, kind: LinkKind | str, ref_id: str) -> int:
    """Clear one kind of link on every node pointing at a deleted record.

    Called when the owning subsystem deletes a procedure, agent or
    department. Only that link field changes; nodes are never deleted.
    Returns the number of nodes updated.
    """
    kind = LinkKind(kind)
    column = getattr(ValueChainNode, kind.column)
    result = await db.execute(
        select(ValueChainNode.id, ValueChainNode.map_id).where(column == ref_id)
    )
    rows = result.all()
    if not rows:
        return 0

    await db.execute(
        update(ValueChainNode)
        .where(column == ref_id)
        .values({kind.column: None, "version": ValueChainNode.version + 1, "updated_at": utcnow()})
        .execution_options(synchronize_session=False)
    )
    # Bring any copies already loaded in this session up to date
    await db.execute(
        select(ValueChainNode)
        .where(ValueChainNode.id.in_([row.id for row in rows]))
        .execution_options(populate_existing=True)
    )
    await _touch_map(db, [row.map_id for row in rows])
    await db.flush()
    graph_mutations_total.labels(operation="invalidate_links").inc()
    logger.info(
        "Cleared %s link %s on %d node(s)", kind.value, ref_id, len(rows), extra={"link_kind": kind.value}
    )
    return len(rows)
