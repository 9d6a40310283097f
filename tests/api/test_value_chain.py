"""Integration tests for the /value-chain endpoints.

These tests use the test database and an HTTP test client with the static
entity linker from conftest.
"""

from __future__ import annotations

import uuid

import pytest

from tests.conftest import create_area, create_edge, create_map, create_node

BASE = "/api/v1/value-chain"


@pytest.fixture
async def seeded_map(db):
    """A map with two linked steps and one edge between them."""
    vc_map = await create_map(db, name="Order to Cash", segment="retail")
    a = await create_node(db, map_id=vc_map.id, label="Receive", procedure_id="proc-1", x=10, y=20)
    b = await create_node(db, map_id=vc_map.id, label="Invoice", agent_id="agent-1")
    edge = await create_edge(db, map_id=vc_map.id, source_id=a.id, target_id=b.id)
    return {"map_id": str(vc_map.id), "a": str(a.id), "b": str(b.id), "edge": str(edge.id)}


# -------------------------------------------------------------------
# Maps
# -------------------------------------------------------------------


class TestCreateMap:
    async def test_create_empty_map(self, client):
        resp = await client.post(f"{BASE}/maps", json={"name": "Procure to Pay", "organization_id": "org-1"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Procure to Pay"
        assert data["layout"] == {"zoom": 1.0, "x": 0.0, "y": 0.0}
        assert data["nodes"] == []
        assert data["summary"]["node_count"] == 0

    async def test_create_with_seed_topology(self, client):
        resp = await client.post(
            f"{BASE}/maps",
            json={
                "name": "Hiring",
                "organization_id": "org-1",
                "layout": {"zoom": 0.5, "x": 1, "y": 2, "theme": "dark"},
                "nodes": [
                    {"id": "s", "type": "start", "label": "Open role"},
                    {
                        "id": "screen",
                        "label": "Screen CVs",
                        "position": {"x": 200, "y": 0},
                        "metrics": {"timeIntensity": 8, "capitalIntensity": 2, "complexity": 2, "automationPotential": 9},
                        "links": {"agent_id": "agent-2"},
                        "style": {"background": "#ffeeaa", "shadow": True},
                    },
                ],
                "edges": [{"source": "s", "target": "screen", "label": "next"}],
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["layout"] == {"zoom": 0.5, "x": 1, "y": 2, "theme": "dark"}
        assert len(data["nodes"]) == 2
        assert len(data["edges"]) == 1
        screen = next(n for n in data["nodes"] if n["label"] == "Screen CVs")
        assert screen["metrics"]["time_intensity"] == 8
        assert screen["roi"] == {"score": 100, "category": "Excellent", "effort": 4.0}
        assert screen["style"] == {"background": "#ffeeaa", "shadow": True}
        assert screen["agent_id"] == "agent-2"
        assert data["edges"][0]["target_id"] == screen["id"]

    async def test_seed_with_bad_link_creates_nothing(self, client):
        resp = await client.post(
            f"{BASE}/maps",
            json={
                "name": "Broken",
                "organization_id": "org-1",
                "nodes": [{"label": "Step", "links": {"procedure_id": "proc-404"}}],
            },
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "procedure_id"

        listing = await client.get(f"{BASE}/maps")
        assert listing.json() == []

    async def test_missing_name_is_validation_error(self, client):
        resp = await client.post(f"{BASE}/maps", json={"organization_id": "org-1"})
        assert resp.status_code == 422

    async def test_edges_without_nodes_rejected(self, client):
        resp = await client.post(
            f"{BASE}/maps",
            json={
                "name": "Dangling",
                "organization_id": "org-1",
                "edges": [{"source": "a", "target": "b"}],
            },
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "source_id"

        listing = await client.get(f"{BASE}/maps")
        assert listing.json() == []

    async def test_seed_node_cannot_name_an_area(self, client):
        resp = await client.post(
            f"{BASE}/maps",
            json={
                "name": "Lanes",
                "organization_id": "org-1",
                "nodes": [{"label": "A", "area_id": str(uuid.uuid4())}],
            },
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "area_id"


class TestReadMaps:
    async def test_get_map_detail(self, client, seeded_map):
        resp = await client.get(f"{BASE}/maps/{seeded_map['map_id']}")
        assert resp.status_code == 200
        data = resp.json()
        assert {n["id"] for n in data["nodes"]} == {seeded_map["a"], seeded_map["b"]}
        assert data["edges"][0]["id"] == seeded_map["edge"]
        assert data["summary"]["procedure_links"] == 1
        assert data["summary"]["agent_links"] == 1
        assert data["summary"]["automation_rate"] == 50

    async def test_get_missing_map(self, client):
        resp = await client.get(f"{BASE}/maps/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Map not found"

    async def test_list_filters(self, client, db, seeded_map):
        await create_map(db, name="Warehouse", organization_id="org-2", segment="logistics")

        resp = await client.get(f"{BASE}/maps", params={"segment": "retail"})
        assert [m["name"] for m in resp.json()] == ["Order to Cash"]
        assert resp.json()[0]["summary"]["node_count"] == 2

        resp = await client.get(f"{BASE}/maps", params={"organization_id": "org-2"})
        assert [m["name"] for m in resp.json()] == ["Warehouse"]

        resp = await client.get(f"{BASE}/maps", params={"search": "cash"})
        assert [m["name"] for m in resp.json()] == ["Order to Cash"]


class TestUpdateMap:
    async def test_rename_and_layout(self, client, seeded_map):
        resp = await client.patch(
            f"{BASE}/maps/{seeded_map['map_id']}",
            json={"name": "O2C", "layout": {"zoom": 2, "x": 0, "y": 0}},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "O2C"
        assert data["layout"] == {"zoom": 2, "x": 0, "y": 0}
        assert data["segment"] == "retail"


class TestDeleteMap:
    async def test_delete_cascades_and_is_idempotent(self, client, seeded_map):
        resp = await client.delete(f"{BASE}/maps/{seeded_map['map_id']}")
        assert resp.status_code == 204

        assert (await client.get(f"{BASE}/nodes/{seeded_map['a']}")).status_code == 404
        assert (await client.get(f"{BASE}/maps/{seeded_map['map_id']}")).status_code == 404

        resp = await client.delete(f"{BASE}/maps/{seeded_map['map_id']}")
        assert resp.status_code == 204


class TestSaveGraph:
    async def test_replaces_topology(self, client, seeded_map):
        new_id = str(uuid.uuid4())
        resp = await client.put(
            f"{BASE}/maps/{seeded_map['map_id']}/graph",
            json={
                "nodes": [
                    {"id": seeded_map["a"], "label": "Receive", "position": {"x": 50, "y": 60},
                     "links": {"procedure_id": "proc-1"}, "version": 1},
                    {"id": new_id, "type": "end", "label": "Closed"},
                ],
                "edges": [{"source_id": seeded_map["a"], "target_id": new_id}],
                "layout": {"zoom": 1.5, "x": 3, "y": 4},
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert {n["id"] for n in data["nodes"]} == {seeded_map["a"], new_id}
        assert [(e["source_id"], e["target_id"]) for e in data["edges"]] == [(seeded_map["a"], new_id)]
        receive = next(n for n in data["nodes"] if n["id"] == seeded_map["a"])
        assert receive["position"] == {"x": 50.0, "y": 60.0}
        assert receive["procedure_id"] == "proc-1"
        assert data["layout"] == {"zoom": 1.5, "x": 3, "y": 4}

    async def test_stale_version_conflict(self, client, seeded_map):
        resp = await client.put(
            f"{BASE}/maps/{seeded_map['map_id']}/graph",
            json={
                "nodes": [
                    {"id": seeded_map["a"], "label": "Receive", "metrics": {"complexity": 1},
                     "links": {"procedure_id": "proc-1"}, "version": 0},
                ],
            },
        )
        assert resp.status_code == 409


# -------------------------------------------------------------------
# Nodes
# -------------------------------------------------------------------


class TestNodes:
    async def test_add_node_fills_defaults(self, client, seeded_map):
        resp = await client.post(
            f"{BASE}/maps/{seeded_map['map_id']}/nodes",
            json={"type": "decision", "label": "Credit ok?", "position": {"x": 5, "y": 5}},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["metrics"] == {
            "time_intensity": 5,
            "capital_intensity": 5,
            "complexity": 5,
            "automation_potential": 5,
        }
        assert data["roi"]["score"] == 100
        assert data["version"] == 1

    async def test_add_node_to_missing_map(self, client):
        resp = await client.post(f"{BASE}/maps/{uuid.uuid4()}/nodes", json={"label": "Orphan"})
        assert resp.status_code == 404

    async def test_add_node_with_unknown_link(self, client, seeded_map):
        resp = await client.post(
            f"{BASE}/maps/{seeded_map['map_id']}/nodes",
            json={"label": "Step", "links": {"department_id": "dept-404"}},
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "department_id"

    async def test_non_numeric_metric_is_bad_request(self, client, seeded_map):
        resp = await client.post(
            f"{BASE}/maps/{seeded_map['map_id']}/nodes",
            json={"label": "Step", "metrics": {"complexity": "hard"}},
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "complexity"

    async def test_patch_metrics_clamps_and_bumps_version(self, client, seeded_map):
        resp = await client.patch(
            f"{BASE}/nodes/{seeded_map['b']}",
            json={"metrics": {"automationPotential": 15}, "version": 1},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["metrics"]["automation_potential"] == 10
        assert data["metrics"]["complexity"] == 5
        assert data["agent_id"] == "agent-1"
        assert data["version"] == 2

    async def test_patch_with_stale_version_conflicts(self, client, seeded_map):
        first = await client.patch(f"{BASE}/nodes/{seeded_map['b']}", json={"metrics": {"complexity": 2}, "version": 1})
        assert first.status_code == 200
        second = await client.patch(f"{BASE}/nodes/{seeded_map['b']}", json={"metrics": {"complexity": 9}, "version": 1})
        assert second.status_code == 409

    async def test_patch_position_is_last_write_wins(self, client, seeded_map):
        resp = await client.patch(
            f"{BASE}/nodes/{seeded_map['a']}", json={"position": {"x": 1, "y": 2}, "version": 99}
        )
        assert resp.status_code == 200
        assert resp.json()["position"] == {"x": 1.0, "y": 2.0}
        assert resp.json()["version"] == 1

    async def test_patch_clears_link(self, client, seeded_map):
        resp = await client.patch(f"{BASE}/nodes/{seeded_map['a']}", json={"links": {"procedure_id": None}})
        assert resp.status_code == 200
        assert resp.json()["procedure_id"] is None

    async def test_patch_reparent_rejected(self, client, db, seeded_map):
        other = await create_map(db, name="Other")
        resp = await client.patch(f"{BASE}/nodes/{seeded_map['a']}", json={"map_id": str(other.id)})
        assert resp.status_code == 400
        assert resp.json()["field"] == "map_id"

    async def test_delete_node_removes_its_edges(self, client, seeded_map):
        resp = await client.delete(f"{BASE}/nodes/{seeded_map['b']}")
        assert resp.status_code == 204

        data = (await client.get(f"{BASE}/maps/{seeded_map['map_id']}")).json()
        assert [n["id"] for n in data["nodes"]] == [seeded_map["a"]]
        assert data["edges"] == []

        assert (await client.delete(f"{BASE}/nodes/{seeded_map['b']}")).status_code == 204


# -------------------------------------------------------------------
# Edges
# -------------------------------------------------------------------


class TestEdges:
    async def test_add_self_loop(self, client, seeded_map):
        resp = await client.post(
            f"{BASE}/maps/{seeded_map['map_id']}/edges",
            json={"source_id": seeded_map["a"], "target_id": seeded_map["a"], "label": "retry"},
        )
        assert resp.status_code == 201
        assert resp.json()["source_id"] == resp.json()["target_id"]

    async def test_cross_map_edge_rejected(self, client, db, seeded_map):
        other = await create_map(db, name="Other")
        foreign = await create_node(db, map_id=other.id)
        resp = await client.post(
            f"{BASE}/maps/{seeded_map['map_id']}/edges",
            json={"source_id": seeded_map["a"], "target_id": str(foreign.id)},
        )
        assert resp.status_code == 422
        assert resp.json()["field"] == "target_id"

    async def test_delete_edge_idempotent(self, client, seeded_map):
        assert (await client.delete(f"{BASE}/edges/{seeded_map['edge']}")).status_code == 204
        assert (await client.delete(f"{BASE}/edges/{seeded_map['edge']}")).status_code == 204


# -------------------------------------------------------------------
# ROI, priorities, coverage, link invalidation
# -------------------------------------------------------------------


class TestRoiScore:
    async def test_score_defaults(self, client):
        resp = await client.post(f"{BASE}/roi/score", json={})
        assert resp.status_code == 200
        assert resp.json() == {"score": 100, "category": "Excellent", "effort": 5.0}

    async def test_score_moderate_boundary(self, client):
        resp = await client.post(
            f"{BASE}/roi/score",
            json={"time_intensity": 8, "capital_intensity": 8, "complexity": 8, "automation_potential": 2},
        )
        assert resp.json() == {"score": 25, "category": "Moderate", "effort": 8.0}

    async def test_zero_effort(self, client):
        resp = await client.post(
            f"{BASE}/roi/score",
            json={"timeIntensity": 0, "capitalIntensity": 0, "complexity": 0, "automationPotential": 0},
        )
        assert resp.json()["score"] == 100


class TestPrioritiesAndCoverage:
    async def test_priorities(self, client, db, seeded_map):
        await create_node(
            db,
            map_id=uuid.UUID(seeded_map["map_id"]),
            label="Slow",
            time_intensity=10,
            capital_intensity=10,
            complexity=10,
            automation_potential=1,
        )
        resp = await client.get(f"{BASE}/priorities", params={"map_id": seeded_map["map_id"]})
        assert resp.status_code == 200
        labels = [item["label"] for item in resp.json()]
        assert labels[-1] == "Slow"
        assert set(labels) == {"Receive", "Invoice", "Slow"}

    async def test_priorities_limit_validated(self, client):
        resp = await client.get(f"{BASE}/priorities", params={"limit": 0})
        assert resp.status_code == 422

    async def test_coverage(self, client, seeded_map):
        resp = await client.get(f"{BASE}/maps/{seeded_map['map_id']}/coverage")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_steps"] == 2
        assert data["covered_steps"] == 1
        assert data["coverage"] == 50
        assert [gap["label"] for gap in data["gaps"]] == ["Invoice"]


class TestInvalidateLinks:
    async def test_invalidate_clears_only_that_link(self, client, seeded_map):
        resp = await client.post(f"{BASE}/links/agent/agent-1/invalidate")
        assert resp.status_code == 200
        assert resp.json() == {"kind": "agent", "ref_id": "agent-1", "nodes_updated": 1}

        node = (await client.get(f"{BASE}/nodes/{seeded_map['b']}")).json()
        assert node["agent_id"] is None
        assert node["label"] == "Invoice"
        assert node["version"] == 2

    async def test_unknown_kind(self, client):
        resp = await client.post(f"{BASE}/links/customer/c-1/invalidate")
        assert resp.status_code == 422


# -------------------------------------------------------------------
# Areas
# -------------------------------------------------------------------


class TestAreas:
    async def test_create_list_and_detail(self, client, seeded_map):
        map_id = seeded_map["map_id"]
        resp = await client.post(
            f"{BASE}/maps/{map_id}/areas", json={"name": "Sales", "color": "#f97316", "icon": "Users"}
        )
        assert resp.status_code == 201
        sales = resp.json()
        assert sales["order"] == 0
        assert sales["node_count"] == 0

        resp = await client.post(f"{BASE}/maps/{map_id}/areas", json={"name": "Finance"})
        assert resp.json()["order"] == 1

        resp = await client.patch(f"{BASE}/nodes/{seeded_map['a']}", json={"area_id": sales["id"]})
        assert resp.status_code == 200
        assert resp.json()["area_id"] == sales["id"]

        detail = (await client.get(f"{BASE}/maps/{map_id}")).json()
        assert [a["name"] for a in detail["areas"]] == ["Sales", "Finance"]
        assert [a["node_count"] for a in detail["areas"]] == [1, 0]
        assert detail["summary"]["area_count"] == 2

        listing = (await client.get(f"{BASE}/maps/{map_id}/areas")).json()
        assert [a["id"] for a in listing] == [a["id"] for a in detail["areas"]]

    async def test_update_area(self, client, db, seeded_map):
        area = await create_area(db, map_id=uuid.UUID(seeded_map["map_id"]), name="Sales")
        resp = await client.patch(f"{BASE}/areas/{area.id}", json={"name": "Inside sales", "order": 4})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Inside sales"
        assert resp.json()["order"] == 4

    async def test_update_missing_area(self, client):
        resp = await client.patch(f"{BASE}/areas/{uuid.uuid4()}", json={"name": "x"})
        assert resp.status_code == 404

    async def test_delete_area_ungroups_nodes(self, client, db, seeded_map):
        area = await create_area(db, map_id=uuid.UUID(seeded_map["map_id"]))
        area_id = str(area.id)
        await client.patch(f"{BASE}/nodes/{seeded_map['a']}", json={"area_id": area_id})

        resp = await client.delete(f"{BASE}/areas/{area_id}")
        assert resp.status_code == 204
        assert (await client.delete(f"{BASE}/areas/{area_id}")).status_code == 204

        node = (await client.get(f"{BASE}/nodes/{seeded_map['a']}")).json()
        assert node["area_id"] is None
        detail = (await client.get(f"{BASE}/maps/{seeded_map['map_id']}")).json()
        assert detail["areas"] == []
        assert len(detail["nodes"]) == 2

    async def test_graph_save_writes_area(self, client, db, seeded_map):
        area = await create_area(db, map_id=uuid.UUID(seeded_map["map_id"]), name="Operations")
        area_id = str(area.id)
        resp = await client.put(
            f"{BASE}/maps/{seeded_map['map_id']}/graph",
            json={
                "nodes": [
                    {"id": seeded_map["a"], "label": "Receive", "links": {"procedure_id": "proc-1"},
                     "area_id": area_id},
                ],
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["nodes"][0]["area_id"] == area_id
        assert data["areas"][0]["node_count"] == 1

    async def test_node_area_from_other_map_rejected(self, client, db, seeded_map):
        other = await create_map(db, name="Other")
        foreign = await create_area(db, map_id=other.id)
        resp = await client.patch(f"{BASE}/nodes/{seeded_map['a']}", json={"area_id": str(foreign.id)})
        assert resp.status_code == 422
        assert resp.json()["field"] == "area_id"
