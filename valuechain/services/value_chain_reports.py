"""Read-only projections over value chain maps for dashboards and reports.

Everything here is computed on read from the stored metrics, so it can never
go stale relative to the nodes it summarizes.
"""
from __future__ import annotations

import uuid
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from valuechain.models.value_chain_area import ValueChainArea
from valuechain.models.value_chain_edge import ValueChainEdge
from valuechain.models.value_chain_map import ValueChainMap
from valuechain.models.value_chain_node import NodeType, ValueChainNode
from valuechain.services.roi_engine import MetricSet, evaluate

# Node types that represent work which could be automated
CANDIDATE_TYPES = (NodeType.PROCESS.value, NodeType.DECISION.value)


def node_roi(node: ValueChainNode) -> dict:
    return evaluate(MetricSet.from_node(node)).as_dict()


def map_summary(
    nodes: Sequence[ValueChainNode],
    edges: Sequence[ValueChainEdge],
    areas: Sequence[ValueChainArea] = (),
) -> dict:
    """Counts, link coverage and metric aggregates for one map."""
    node_count = len(nodes)
    summary = {
        "node_count": node_count,
        "edge_count": len(edges),
        "area_count": len(areas),
        "process_steps": sum(1 for n in nodes if n.type == NodeType.PROCESS.value),
        "procedure_links": sum(1 for n in nodes if n.procedure_id),
        "agent_links": sum(1 for n in nodes if n.agent_id),
        "department_links": sum(1 for n in nodes if n.department_id),
        "automation_rate": 0,
        "total_time_intensity": None,
        "total_capital_intensity": None,
        "average_complexity": None,
        "automation_score": None,
        "average_roi_score": None,
    }
    if not node_count:
        return summary

    metric_sets = [MetricSet.from_node(n) for n in nodes]
    summary["automation_rate"] = round(summary["agent_links"] / node_count * 100)
    summary["total_time_intensity"] = sum(m.time_intensity for m in metric_sets)
    summary["total_capital_intensity"] = sum(m.capital_intensity for m in metric_sets)
    summary["average_complexity"] = round(sum(m.complexity for m in metric_sets) / node_count, 2)
    # Mean potential rescaled to 0-100
    summary["automation_score"] = round(
        sum(m.automation_potential for m in metric_sets) / node_count * 10, 2
    )
    summary["average_roi_score"] = round(
        sum(evaluate(m).score for m in metric_sets) / node_count, 2
    )
    return summary


def procedure_coverage(nodes: Sequence[ValueChainNode]) -> dict:
    """Share of work steps backed by a procedure document, and the steps that are not."""
    steps = [n for n in nodes if n.type in CANDIDATE_TYPES]
    gaps = [
        {"node_id": str(n.id), "label": n.label, "type": n.type}
        for n in steps
        if not n.procedure_id
    ]
    covered = len(steps) - len(gaps)
    return {
        "total_steps": len(steps),
        "covered_steps": covered,
        "coverage": round(covered / len(steps) * 100) if steps else 0,
        "gaps": gaps,
    }


async def rank_automation_candidates(
    db: AsyncSession,
    organization_id: str | None = None,
    map_id: uuid.UUID | None = None,
    limit: int = 20,
) -> list[dict]:
    """Work steps ordered by ROI score, then automation potential, then label."""
    stmt = (
        select(ValueChainNode, ValueChainMap.name)
        .join(ValueChainMap, ValueChainMap.id == ValueChainNode.map_id)
        .where(ValueChainNode.type.in_(CANDIDATE_TYPES))
    )
    if organization_id:
        stmt = stmt.where(ValueChainMap.organization_id == organization_id)
    if map_id:
        stmt = stmt.where(ValueChainNode.map_id == map_id)
    result = await db.execute(stmt)

    ranked = []
    for node, map_name in result.all():
        metrics = MetricSet.from_node(node)
        roi = evaluate(metrics)
        ranked.append(
            {
                "node_id": str(node.id),
                "map_id": str(node.map_id),
                "map_name": map_name,
                "label": node.label,
                "type": node.type,
                "metrics": metrics.as_dict(),
                "roi": roi.as_dict(),
                "procedure_id": node.procedure_id,
                "agent_id": node.agent_id,
            }
        )
    ranked.sort(
        key=lambda item: (-item["roi"]["score"], -item["metrics"]["automation_potential"], item["label"])
    )
    return ranked[:limit]


def area_breakdown(areas: Sequence[ValueChainArea], nodes: Sequence[ValueChainNode]) -> list[dict]:
    """Areas in display order, each with the number of nodes grouped under it."""
    counts: dict[uuid.UUID, int] = {}
    for node in nodes:
        if node.area_id is not None:
            counts[node.area_id] = counts.get(node.area_id, 0) + 1
    return [
        {
            "id": str(area.id),
            "map_id": str(area.map_id),
            "name": area.name,
            "color": area.color,
            "icon": area.icon,
            "order": area.sort_order,
            "node_count": counts.get(area.id, 0),
        }
        for area in areas
    ]
