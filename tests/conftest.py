"""Shared test fixtures for the value chain service.

Provides:
- Async test database (in-memory SQLite by default, ``TEST_DATABASE_URL`` to
  point at PostgreSQL), schema created fresh for every test
- A static entity linker whose directories know a handful of record ids
- FastAPI test client with the DB and linker dependencies overridden
- Factory helpers for creating maps, areas, nodes and edges
"""

from __future__ import annotations

import os

# Set test environment BEFORE any app imports so Settings() picks them up.
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from valuechain.models import Base
from valuechain.services.entity_linker import EntityLinker, LinkKind, StaticReferenceDirectory

KNOWN_PROCEDURES = ("proc-1", "proc-2")
KNOWN_AGENTS = ("agent-1", "agent-2")
KNOWN_DEPARTMENTS = ("dept-1",)

# ---------------------------------------------------------------------------
# Database engine
# ---------------------------------------------------------------------------


def _test_db_url() -> str:
    return os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")


@pytest.fixture
async def test_engine():
    """Create an engine with all tables. Drops tables at teardown.

    In-memory SQLite needs ``StaticPool`` so every session sees the same
    database; other backends get ``NullPool`` to avoid cross-loop connections.
    """
    url = _test_db_url()
    if url.startswith("sqlite"):
        engine = create_async_engine(url, poolclass=StaticPool)
    else:
        engine = create_async_engine(url, poolclass=NullPool)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        await engine.dispose()
        pytest.skip(f"Test database not available ({exc})")

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db(test_engine):
    """Session used both by tests and, through the override, by the API."""
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


# ---------------------------------------------------------------------------
# Entity linker
# ---------------------------------------------------------------------------


@pytest.fixture
def directories():
    return {
        LinkKind.PROCEDURE: StaticReferenceDirectory(KNOWN_PROCEDURES),
        LinkKind.AGENT: StaticReferenceDirectory(KNOWN_AGENTS),
        LinkKind.DEPARTMENT: StaticReferenceDirectory(KNOWN_DEPARTMENTS),
    }


@pytest.fixture
def linker(directories):
    return EntityLinker(directories, timeout=0.5)


# ---------------------------------------------------------------------------
# FastAPI test app + HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def app(db, linker):
    """Minimal FastAPI test app with ``get_db`` and ``get_entity_linker`` overridden."""
    from fastapi import FastAPI

    from valuechain.api.deps import get_entity_linker
    from valuechain.api.v1.router import api_router
    from valuechain.config import settings
    from valuechain.core.exceptions import ValueChainError, value_chain_error_handler
    from valuechain.database import get_db

    test_app = FastAPI()
    test_app.add_exception_handler(ValueChainError, value_chain_error_handler)
    test_app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    async def _override_get_db():
        yield db

    test_app.dependency_overrides[get_db] = _override_get_db
    test_app.dependency_overrides[get_entity_linker] = lambda: linker
    yield test_app
    test_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """HTTP test client for the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


async def create_map(db, *, name="Order to Cash", organization_id="org-1", **kwargs):
    """Insert a map into the test database and commit."""
    from valuechain.models.value_chain_map import ValueChainMap

    vc_map = ValueChainMap(
        name=name,
        organization_id=organization_id,
        description=kwargs.get("description"),
        segment=kwargs.get("segment"),
        layout=kwargs.get("layout", {"zoom": 1.0, "x": 0.0, "y": 0.0}),
    )
    db.add(vc_map)
    await db.commit()
    return vc_map


async def create_node(db, *, map_id, label="Step", node_type="process", **kwargs):
    """Insert a node into the test database and commit.

    Metric keyword arguments default to the neutral 5; link ids are stored
    as given without consulting any directory.
    """
    from valuechain.models.value_chain_node import ValueChainNode

    node = ValueChainNode(
        map_id=map_id,
        type=node_type,
        label=label,
        position_x=kwargs.get("x", 0.0),
        position_y=kwargs.get("y", 0.0),
        time_intensity=kwargs.get("time_intensity", 5),
        capital_intensity=kwargs.get("capital_intensity", 5),
        complexity=kwargs.get("complexity", 5),
        automation_potential=kwargs.get("automation_potential", 5),
        procedure_id=kwargs.get("procedure_id"),
        agent_id=kwargs.get("agent_id"),
        department_id=kwargs.get("department_id"),
        area_id=kwargs.get("area_id"),
        estimated_hours=kwargs.get("estimated_hours"),
        version=kwargs.get("version", 1),
    )
    db.add(node)
    await db.commit()
    return node


async def create_edge(db, *, map_id, source_id, target_id, label=None):
    """Insert an edge into the test database and commit."""
    from valuechain.models.value_chain_edge import ValueChainEdge

    edge = ValueChainEdge(map_id=map_id, source_id=source_id, target_id=target_id, label=label)
    db.add(edge)
    await db.commit()
    return edge


async def create_area(db, *, map_id, name="Sales", order=0, **kwargs):
    """Insert an area (swimlane) into the test database and commit."""
    from valuechain.models.value_chain_area import ValueChainArea

    area = ValueChainArea(
        map_id=map_id,
        name=name,
        color=kwargs.get("color"),
        icon=kwargs.get("icon"),
        sort_order=order,
    )
    db.add(area)
    await db.commit()
    return area
