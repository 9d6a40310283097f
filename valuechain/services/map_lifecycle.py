"""Compound map operations that must apply as a single transaction.

``create_map_with_nodes`` and ``save_map_graph`` either apply completely or
leave the database as it was; ``delete_map_cascade`` is the only sanctioned
way of removing a map. Unlike the graph store primitives, these functions own
their transaction: they commit on success and roll back on any error.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from valuechain.core.exceptions import Conflict, InvalidArgument, InvalidReference
from valuechain.core.metrics import optimistic_conflicts_total
from valuechain.models.base import utcnow
from valuechain.models.value_chain_edge import ValueChainEdge
from valuechain.models.value_chain_map import ValueChainMap
from valuechain.models.value_chain_node import ValueChainNode
from valuechain.services import graph_store
from valuechain.services.entity_linker import LINK_COLUMNS, EntityLinker, refs_from_columns
from valuechain.services.roi_engine import MetricSet

logger = logging.getLogger("valuechain.lifecycle")


def _node_kwargs(node_def: dict[str, Any]) -> dict[str, Any]:
    return {
        "description": node_def.get("description"),
        "style": node_def.get("style"),
        "estimated_hours": node_def.get("estimated_hours"),
        "estimated_cost": node_def.get("estimated_cost"),
        "current_fte": node_def.get("current_fte"),
    }


def _resolve_endpoint(ref: Any, keys: dict[str, uuid.UUID], field: str) -> uuid.UUID:
    ref = str(ref)
    if ref in keys:
        return keys[ref]
    raise InvalidReference(f"{field} {ref} is not one of the map's nodes", field=field)


async def create_map_with_nodes(
    db: AsyncSession,
    linker: EntityLinker,
    name: str,
    organization_id: str,
    initial_nodes: Sequence[dict[str, Any]],
    *,
    description: str | None = None,
    segment: str | None = None,
    layout: dict | None = None,
    initial_edges: Sequence[dict[str, Any]] = (),
) -> ValueChainMap:
    """Create a map seeded with nodes (and optionally edges), all or nothing.

    Each node definition is a dict with ``type``, ``label``, ``position``,
    ``metrics``, ``links`` and optional display fields. Edge definitions name their
    endpoints either by ``"#<index>"`` into ``initial_nodes`` or by the
    node definition's ``id`` key, which is only a local handle.
    """
    try:
        vc_map = await graph_store.create_map(
            db, name, organization_id, description, segment=segment, layout=layout
        )
        keys: dict[str, uuid.UUID] = {}
        for index, node_def in enumerate(initial_nodes):
            node = await graph_store.add_node(
                db,
                linker,
                vc_map.id,
                node_def.get("type", "process"),
                node_def.get("label", ""),
                node_def.get("position"),
                node_def.get("metrics"),
                node_def.get("links"),
                area_id=node_def.get("area_id"),
                **_node_kwargs(node_def),
            )
            keys[f"#{index}"] = node.id
            if node_def.get("id"):
                keys[str(node_def["id"])] = node.id

        for node_def in initial_edges:
            source = _resolve_endpoint(node_def.get("source_id"), keys, "source_id")
            target = _resolve_endpoint(node_def.get("target_id"), keys, "target_id")
            await graph_store.add_edge(
                db, vc_map.id, source, target, node_def.get("label"), style=node_def.get("style")
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Created map %s with %d nodes and %d edges",
        vc_map.id,
        len(initial_nodes),
        len(initial_edges),
        extra={"map_id": str(vc_map.id)},
    )
    return vc_map


async def delete_map_cascade(db: AsyncSession, map_id: uuid.UUID) -> None:
    """Remove a map together with all of its nodes and edges. Idempotent."""
    try:
        await graph_store.delete_map(db, map_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def save_map_graph(
    db: AsyncSession,
    linker: EntityLinker,
    map_id: uuid.UUID,
    nodes: Sequence[dict[str, Any]],
    edges: Sequence[dict[str, Any]],
    layout: dict | None = None,
) -> ValueChainMap:
    """Replace a map's topology with the editor's current state.

    Nodes are upserted by their (client-generated UUID) ids, nodes missing
    from ``nodes`` are deleted together with their edges, all edges are
    replaced, and ``layout`` overwrites the stored viewport. A node's
    ``area_id`` must name one of the map's areas. A node definition
    carrying ``version`` is refused with :class:`Conflict` if its metrics
    or links would change but the stored node has moved on.
    """
    try:
        vc_map = await graph_store.get_map(db, map_id)

        wanted: dict[uuid.UUID, dict[str, Any]] = {}
        for node_def in nodes:
            try:
                node_id = uuid.UUID(str(node_def.get("id")))
            except ValueError:
                raise InvalidArgument(f"Node id {node_def.get('id')!r} is not a UUID", field="nodes.id") from None
            wanted[node_id] = node_def

        result = await db.execute(select(ValueChainNode).where(ValueChainNode.map_id == vc_map.id))
        existing = {node.id: node for node in result.scalars().all()}

        # Ids that already belong to another map cannot be claimed here
        foreign = await db.scalar(
            select(ValueChainNode.id).where(
                ValueChainNode.id.in_(list(wanted)), ValueChainNode.map_id != vc_map.id
            ).limit(1)
        )
        if foreign is not None:
            raise InvalidReference(f"Node {foreign} belongs to another map", field="nodes.id")

        saved_keys = {str(node_id): node_id for node_id in wanted}
        new_edges = []
        for node_def in edges:
            source = _resolve_endpoint(node_def.get("source_id"), saved_keys, "source_id")
            target = _resolve_endpoint(node_def.get("target_id"), saved_keys, "target_id")
            edge_id = graph_store.as_uuid(node_def["id"], "edges.id") if node_def.get("id") else uuid.uuid4()
            new_edges.append(
                ValueChainEdge(
                    id=edge_id,
                    map_id=vc_map.id,
                    source_id=source,
                    target_id=target,
                    label=node_def.get("label"),
                    style=node_def.get("style"),
                )
            )

        areas: dict[uuid.UUID, uuid.UUID | None] = {}
        for node_id, node_def in wanted.items():
            areas[node_id] = await graph_store.area_in_map(db, vc_map.id, node_def.get("area_id"))

        # Validate every link before touching any row
        for node_def in wanted.values():
            refs, _ = refs_from_columns(node_def.get("links") or {})
            await linker.validate(refs)

        await db.execute(delete(ValueChainEdge).where(ValueChainEdge.map_id == vc_map.id))
        removed = [node_id for node_id in existing if node_id not in wanted]
        if removed:
            await db.execute(delete(ValueChainNode).where(ValueChainNode.id.in_(removed)))
        await db.flush()

        for node_id, node_def in wanted.items():
            node = existing.get(node_id)
            if node is None:
                await graph_store.add_node(
                    db,
                    linker,
                    vc_map.id,
                    node_def.get("type", "process"),
                    node_def.get("label", ""),
                    node_def.get("position"),
                    node_def.get("metrics"),
                    node_def.get("links"),
                    node_id=node_id,
                    area_id=areas[node_id],
                    **_node_kwargs(node_def),
                )
            else:
                await _write_node_state(db, node, node_def, areas[node_id])
        if existing:
            # The writes above bypass the identity map; reload what this session holds
            await db.execute(
                select(ValueChainNode)
                .where(ValueChainNode.map_id == vc_map.id)
                .execution_options(populate_existing=True)
            )
        await db.flush()

        db.add_all(new_edges)

        if layout is not None:
            vc_map.layout = dict(layout)
        vc_map.updated_at = utcnow()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Saved graph of map %s: %d nodes, %d edges",
        vc_map.id,
        len(wanted),
        len(edges),
        extra={"map_id": str(vc_map.id)},
    )
    return vc_map


async def _write_node_state(
    db: AsyncSession,
    node: ValueChainNode,
    node_def: dict[str, Any],
    area_id: uuid.UUID | None,
) -> None:
    """Overwrite a stored node with the editor's copy (links already validated).

    Metrics and links are only written when they differ from what was read,
    and then only if the row still carries the version that was read.
    """
    metrics = MetricSet.from_values(node_def.get("metrics"))
    links = node_def.get("links") or {}
    new_links = {column: links.get(column) or None for column in LINK_COLUMNS}

    x, y = graph_store.parse_position(node_def.get("position"))
    values: dict[str, Any] = {
        "type": graph_store.parse_node_type(node_def.get("type", node.type)),
        "label": (node_def.get("label") or node.label).strip(),
        "position_x": x,
        "position_y": y,
        "area_id": area_id,
        **_node_kwargs(node_def),
        "updated_at": utcnow(),
    }
    stmt = update(ValueChainNode).where(ValueChainNode.id == node.id)

    guarded_changed = metrics != MetricSet.from_node(node) or any(
        getattr(node, column) != value for column, value in new_links.items()
    )
    if guarded_changed:
        expected = node_def.get("version")
        if expected is not None and expected != node.version:
            optimistic_conflicts_total.inc()
            raise Conflict(f"Node {node.id} was modified (version {node.version}, expected {expected})")
        stmt = stmt.where(ValueChainNode.version == node.version)
        values.update(metrics.as_dict(), **new_links, version=node.version + 1)

    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        optimistic_conflicts_total.inc()
        logger.info(
            "Concurrent change to node %s rejected the graph save", node.id, extra={"node_id": str(node.id)}
        )
        raise Conflict(f"Node {node.id} was modified concurrently; re-fetch and retry")
