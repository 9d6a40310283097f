from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from valuechain.api.deps import get_entity_linker
from valuechain.database import get_db
from valuechain.models.value_chain_area import ValueChainArea
from valuechain.models.value_chain_edge import ValueChainEdge
from valuechain.models.value_chain_map import ValueChainMap
from valuechain.models.value_chain_node import ValueChainNode
from valuechain.schemas.value_chain import (
    AreaCreate,
    AreaOut,
    AreaUpdate,
    CoverageReport,
    EdgeCreate,
    EdgeOut,
    GraphSave,
    MapCreate,
    MapDetail,
    MapListItem,
    MapUpdate,
    NodeCreate,
    NodeOut,
    NodeUpdate,
    PriorityItem,
    RoiOut,
    RoiScoreRequest,
    dump_blob,
)
from valuechain.services import graph_store, map_lifecycle, value_chain_reports
from valuechain.services.entity_linker import EntityLinker, LinkKind
from valuechain.services.roi_engine import MetricSet, evaluate

router = APIRouter(prefix="/value-chain", tags=["value-chain"])


# ── serializers ───────────────────────────────────────────────────────────────


def _node_out(node: ValueChainNode) -> dict:
    metrics = MetricSet.from_node(node)
    return {
        "id": str(node.id),
        "map_id": str(node.map_id),
        "type": node.type,
        "label": node.label,
        "description": node.description,
        "position": {"x": node.position_x, "y": node.position_y},
        "style": node.style,
        "metrics": metrics.as_dict(),
        "roi": evaluate(metrics).as_dict(),
        "procedure_id": node.procedure_id,
        "agent_id": node.agent_id,
        "department_id": node.department_id,
        "area_id": str(node.area_id) if node.area_id else None,
        "estimated_hours": node.estimated_hours,
        "estimated_cost": node.estimated_cost,
        "current_fte": node.current_fte,
        "version": node.version,
        "created_at": node.created_at,
        "updated_at": node.updated_at,
    }


def _edge_out(edge: ValueChainEdge) -> dict:
    return {
        "id": str(edge.id),
        "map_id": str(edge.map_id),
        "source_id": str(edge.source_id),
        "target_id": str(edge.target_id),
        "label": edge.label,
        "style": edge.style,
    }


def _map_out(vc_map: ValueChainMap) -> dict:
    return {
        "id": str(vc_map.id),
        "name": vc_map.name,
        "description": vc_map.description,
        "organization_id": vc_map.organization_id,
        "segment": vc_map.segment,
        "layout": vc_map.layout,
        "created_at": vc_map.created_at,
        "updated_at": vc_map.updated_at,
    }


def _node_payload(node: NodeCreate) -> dict:
    return {
        "id": node.id,
        "type": node.type.value,
        "label": node.label,
        "description": node.description,
        "position": node.position.model_dump(),
        "style": dump_blob(node.style),
        "metrics": node.metrics.supplied() if node.metrics else None,
        "links": node.links.supplied() if node.links else None,
        "estimated_hours": node.estimated_hours,
        "estimated_cost": node.estimated_cost,
        "current_fte": node.current_fte,
        "area_id": node.area_id,
        "version": getattr(node, "version", None),
    }


async def _map_detail(db: AsyncSession, vc_map: ValueChainMap) -> dict:
    nodes = await graph_store.list_nodes(db, vc_map.id)
    edges = await graph_store.list_edges(db, vc_map.id)
    areas = await graph_store.list_areas(db, vc_map.id)
    return {
        **_map_out(vc_map),
        "nodes": [_node_out(n) for n in nodes],
        "edges": [_edge_out(e) for e in edges],
        "areas": value_chain_reports.area_breakdown(areas, nodes),
        "summary": value_chain_reports.map_summary(nodes, edges, areas),
    }


# ── maps ──────────────────────────────────────────────────────────────────────


@router.get("/maps", response_model=list[MapListItem])
async def list_maps(
    organization_id: str | None = None,
    segment: str | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    maps = await graph_store.list_maps(db, organization_id, segment, search)
    items = []
    for vc_map in maps:
        nodes = await graph_store.list_nodes(db, vc_map.id)
        edges = await graph_store.list_edges(db, vc_map.id)
        areas = await graph_store.list_areas(db, vc_map.id)
        items.append({**_map_out(vc_map), "summary": value_chain_reports.map_summary(nodes, edges, areas)})
    return items


@router.post("/maps", status_code=201, response_model=MapDetail)
async def create_map(
    body: MapCreate,
    db: AsyncSession = Depends(get_db),
    linker: EntityLinker = Depends(get_entity_linker),
):
    layout = dump_blob(body.layout) if body.layout else None
    # Edges can only resolve against seeded nodes
    if body.nodes or body.edges:
        vc_map = await map_lifecycle.create_map_with_nodes(
            db,
            linker,
            body.name,
            body.organization_id,
            [_node_payload(n) for n in body.nodes or []],
            description=body.description,
            segment=body.segment,
            layout=layout,
            initial_edges=[
                {"source_id": e.source_id, "target_id": e.target_id, "label": e.label, "style": dump_blob(e.style)}
                for e in body.edges or []
            ],
        )
    else:
        vc_map = await graph_store.create_map(
            db, body.name, body.organization_id, body.description, segment=body.segment, layout=layout
        )
        await db.commit()
    return await _map_detail(db, vc_map)


@router.get("/maps/{map_id}", response_model=MapDetail)
async def get_map(map_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    vc_map = await graph_store.get_map(db, map_id)
    return await _map_detail(db, vc_map)


@router.patch("/maps/{map_id}", response_model=MapDetail)
async def update_map(map_id: uuid.UUID, body: MapUpdate, db: AsyncSession = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    if "layout" in changes:
        changes["layout"] = dump_blob(body.layout)
    vc_map = await graph_store.update_map(db, map_id, changes)
    await db.commit()
    return await _map_detail(db, vc_map)


@router.put("/maps/{map_id}/graph", response_model=MapDetail)
async def save_map_graph(
    map_id: uuid.UUID,
    body: GraphSave,
    db: AsyncSession = Depends(get_db),
    linker: EntityLinker = Depends(get_entity_linker),
):
    vc_map = await map_lifecycle.save_map_graph(
        db,
        linker,
        map_id,
        [_node_payload(n) for n in body.nodes],
        [
            {"id": e.id, "source_id": e.source_id, "target_id": e.target_id, "label": e.label, "style": dump_blob(e.style)}
            for e in body.edges
        ],
        layout=dump_blob(body.layout),
    )
    return await _map_detail(db, vc_map)


@router.delete("/maps/{map_id}", status_code=204)
async def delete_map(map_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await map_lifecycle.delete_map_cascade(db, map_id)
    return Response(status_code=204)


@router.get("/maps/{map_id}/coverage", response_model=CoverageReport)
async def map_coverage(map_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    vc_map = await graph_store.get_map(db, map_id)
    nodes = await graph_store.list_nodes(db, vc_map.id)
    return value_chain_reports.procedure_coverage(nodes)


# ── nodes ─────────────────────────────────────────────────────────────────────


@router.post("/maps/{map_id}/nodes", status_code=201, response_model=NodeOut)
async def add_node(
    map_id: uuid.UUID,
    body: NodeCreate,
    db: AsyncSession = Depends(get_db),
    linker: EntityLinker = Depends(get_entity_linker),
):
    node_def = _node_payload(body)
    node = await graph_store.add_node(
        db,
        linker,
        map_id,
        node_def["type"],
        node_def["label"],
        node_def["position"],
        node_def["metrics"],
        node_def["links"],
        description=node_def["description"],
        style=node_def["style"],
        estimated_hours=node_def["estimated_hours"],
        estimated_cost=node_def["estimated_cost"],
        current_fte=node_def["current_fte"],
        area_id=node_def["area_id"],
    )
    await db.commit()
    return _node_out(node)


@router.get("/nodes/{node_id}", response_model=NodeOut)
async def get_node(node_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return _node_out(await graph_store.get_node(db, node_id))


@router.patch("/nodes/{node_id}", response_model=NodeOut)
async def update_node(
    node_id: uuid.UUID,
    body: NodeUpdate,
    db: AsyncSession = Depends(get_db),
    linker: EntityLinker = Depends(get_entity_linker),
):
    changes = body.model_dump(exclude_unset=True, exclude={"version", "metrics", "links", "style"})
    if body.metrics is not None:
        changes["metrics"] = body.metrics.supplied()
    if body.links is not None:
        changes["links"] = body.links.supplied()
    if "style" in body.model_fields_set:
        changes["style"] = dump_blob(body.style)
    node = await graph_store.update_node(db, linker, node_id, changes, expected_version=body.version)
    await db.commit()
    return _node_out(node)


@router.delete("/nodes/{node_id}", status_code=204)
async def delete_node(node_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await graph_store.delete_node(db, node_id)
    await db.commit()
    return Response(status_code=204)


# ── edges ─────────────────────────────────────────────────────────────────────


@router.post("/maps/{map_id}/edges", status_code=201, response_model=EdgeOut)
async def add_edge(map_id: uuid.UUID, body: EdgeCreate, db: AsyncSession = Depends(get_db)):
    edge = await graph_store.add_edge(
        db, map_id, body.source_id, body.target_id, body.label, style=dump_blob(body.style)
    )
    await db.commit()
    return _edge_out(edge)


@router.delete("/edges/{edge_id}", status_code=204)
async def delete_edge(edge_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await graph_store.delete_edge(db, edge_id)
    await db.commit()
    return Response(status_code=204)


# ── areas ─────────────────────────────────────────────────────────────────────


async def _area_out(db: AsyncSession, area: ValueChainArea) -> dict:
    nodes = await graph_store.list_nodes(db, area.map_id)
    return value_chain_reports.area_breakdown([area], nodes)[0]


@router.get("/maps/{map_id}/areas", response_model=list[AreaOut])
async def list_areas(map_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    vc_map = await graph_store.get_map(db, map_id)
    areas = await graph_store.list_areas(db, vc_map.id)
    nodes = await graph_store.list_nodes(db, vc_map.id)
    return value_chain_reports.area_breakdown(areas, nodes)


@router.post("/maps/{map_id}/areas", status_code=201, response_model=AreaOut)
async def add_area(map_id: uuid.UUID, body: AreaCreate, db: AsyncSession = Depends(get_db)):
    area = await graph_store.add_area(db, map_id, body.name, body.color, body.icon, order=body.order)
    await db.commit()
    return await _area_out(db, area)


@router.patch("/areas/{area_id}", response_model=AreaOut)
async def update_area(area_id: uuid.UUID, body: AreaUpdate, db: AsyncSession = Depends(get_db)):
    area = await graph_store.update_area(db, area_id, body.model_dump(exclude_unset=True))
    await db.commit()
    return await _area_out(db, area)


@router.delete("/areas/{area_id}", status_code=204)
async def delete_area(area_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    await graph_store.delete_area(db, area_id)
    await db.commit()
    return Response(status_code=204)


# ── ROI and prioritization ────────────────────────────────────────────────────


@router.get("/priorities", response_model=list[PriorityItem])
async def automation_priorities(
    organization_id: str | None = None,
    map_id: uuid.UUID | None = None,
    limit: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await value_chain_reports.rank_automation_candidates(db, organization_id, map_id, limit)


@router.post("/roi/score", response_model=RoiOut)
async def score_metrics(body: RoiScoreRequest):
    return evaluate(body.supplied()).as_dict()


# ── link invalidation hook ────────────────────────────────────────────────────


@router.post("/links/{kind}/{ref_id}/invalidate")
async def invalidate_links(kind: LinkKind, ref_id: str, db: AsyncSession = Depends(get_db)):
    """Called by the owning subsystem after it deletes a procedure, agent or department."""
    cleared = await graph_store.invalidate_links(db, kind, ref_id)
    await db.commit()
    return {"kind": kind.value, "ref_id": ref_id, "nodes_updated": cleared}
