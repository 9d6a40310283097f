"""Weak references from value chain nodes to externally owned records.

A node may point at a procedure document, an automation agent and a
department. Those records belong to other subsystems; this module only asks
their directories whether an id exists. It never creates, changes or deletes
them, and a failed lookup never deletes a node.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import ClassVar, Iterable, Protocol
from urllib.parse import quote

import httpx

from valuechain.config import settings
from valuechain.core.exceptions import InvalidArgument, InvalidReference, Unavailable
from valuechain.core.metrics import link_check_duration_seconds, link_checks_total

logger = logging.getLogger("valuechain.links")

MAX_REF_LENGTH = 100


class LinkKind(str, enum.Enum):
    PROCEDURE = "procedure"
    AGENT = "agent"
    DEPARTMENT = "department"

    @property
    def column(self) -> str:
        """Name of the node column holding this kind of reference."""
        return f"{self.value}_id"


LINK_COLUMNS = tuple(kind.column for kind in LinkKind)


# ── Tagged references ────────────────────────────────────────────────


@dataclass(frozen=True)
class LinkRef:
    kind: ClassVar[LinkKind]
    id: str

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise InvalidArgument(f"{self.kind.column} must be a non-empty string", field=self.kind.column)
        if len(self.id) > MAX_REF_LENGTH:
            raise InvalidArgument(f"{self.kind.column} is too long", field=self.kind.column)


@dataclass(frozen=True)
class ProcedureRef(LinkRef):
    kind: ClassVar[LinkKind] = LinkKind.PROCEDURE


@dataclass(frozen=True)
class AgentRef(LinkRef):
    kind: ClassVar[LinkKind] = LinkKind.AGENT


@dataclass(frozen=True)
class DepartmentRef(LinkRef):
    kind: ClassVar[LinkKind] = LinkKind.DEPARTMENT


REF_TYPES: dict[LinkKind, type[LinkRef]] = {
    LinkKind.PROCEDURE: ProcedureRef,
    LinkKind.AGENT: AgentRef,
    LinkKind.DEPARTMENT: DepartmentRef,
}


def make_ref(kind: LinkKind | str, ref_id: str) -> LinkRef:
    return REF_TYPES[LinkKind(kind)](ref_id)


def refs_from_columns(values: dict) -> tuple[list[LinkRef], list[LinkKind]]:
    """Split ``{procedure_id: ..., agent_id: None, ...}`` into refs to set and kinds to clear.

    Only keys present in ``values`` are considered, so partial updates leave
    the other links alone.
    """
    to_set: list[LinkRef] = []
    to_clear: list[LinkKind] = []
    for kind in LinkKind:
        if kind.column not in values:
            continue
        ref_id = values[kind.column]
        if ref_id is None or ref_id == "":
            to_clear.append(kind)
        else:
            to_set.append(make_ref(kind, ref_id))
    return to_set, to_clear


# ── Directories ──────────────────────────────────────────────────────


class ReferenceDirectory(Protocol):
    """Existence check exposed by the subsystem that owns a kind of record."""

    async def exists(self, ref_id: str) -> bool: ...


class HttpReferenceDirectory:
    """Directory backed by the owning subsystem's HTTP API.

    ``GET {base_url}/{id}``: 2xx means found, 404 means missing. Any other
    status or a transport error is reported as :class:`Unavailable`. The id is
    sent as a single escaped path segment, so ``/``, ``?`` and ``#`` inside it
    never select a different resource.
    """

    def __init__(self, base_url: str, *, timeout: float, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def exists(self, ref_id: str) -> bool:
        if ref_id in (".", ".."):
            # Dot segments would address the collection or its parent
            return False
        client = await self._get_client()
        try:
            resp = await client.get(f"{self.base_url}/{quote(ref_id, safe='')}")
        except httpx.TimeoutException as exc:
            raise Unavailable(f"Directory at {self.base_url} timed out") from exc
        except httpx.HTTPError as exc:
            raise Unavailable(f"Directory at {self.base_url} is unreachable: {exc}") from exc
        if resp.status_code == 404:
            return False
        if 200 <= resp.status_code < 300:
            return True
        raise Unavailable(f"Directory at {self.base_url} answered {resp.status_code}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class StaticReferenceDirectory:
    """In-process directory over a fixed set of ids (seeding, tests, fixtures)."""

    def __init__(self, ids: Iterable[str] = ()):
        self.ids = set(ids)

    async def exists(self, ref_id: str) -> bool:
        return ref_id in self.ids

    def add(self, ref_id: str) -> None:
        self.ids.add(ref_id)

    def discard(self, ref_id: str) -> None:
        self.ids.discard(ref_id)


# ── Linker ───────────────────────────────────────────────────────────


class EntityLinker:
    """Resolves and validates node links against per-kind directories."""

    def __init__(
        self,
        directories: dict[LinkKind, ReferenceDirectory] | None = None,
        *,
        timeout: float = 2.0,
    ):
        self.directories = dict(directories or {})
        self.timeout = timeout

    async def resolve_link(self, kind: LinkKind | str, ref_id: str) -> bool:
        """Existence check for one reference; bounded by ``timeout``, never retried."""
        kind = LinkKind(kind)
        directory = self.directories.get(kind)
        if directory is None:
            link_checks_total.labels(kind=kind.value, outcome="unavailable").inc()
            raise Unavailable(f"No directory configured for {kind.value} references", field=kind.column)

        start = time.perf_counter()
        try:
            found = await asyncio.wait_for(directory.exists(ref_id), timeout=self.timeout)
        except asyncio.TimeoutError:
            link_checks_total.labels(kind=kind.value, outcome="unavailable").inc()
            logger.warning(
                "%s lookup for %s timed out after %.1fs",
                kind.value,
                ref_id,
                self.timeout,
                extra={"link_kind": kind.value},
            )
            raise Unavailable(
                f"Timed out checking {kind.value} {ref_id}", field=kind.column
            ) from None
        except Unavailable as exc:
            link_checks_total.labels(kind=kind.value, outcome="unavailable").inc()
            logger.warning(
                "%s lookup for %s failed: %s", kind.value, ref_id, exc.detail, extra={"link_kind": kind.value}
            )
            exc.field = kind.column
            raise
        finally:
            link_check_duration_seconds.labels(kind=kind.value).observe(time.perf_counter() - start)

        link_checks_total.labels(kind=kind.value, outcome="found" if found else "missing").inc()
        return found

    async def resolve(self, ref: LinkRef) -> bool:
        return await self.resolve_link(ref.kind, ref.id)

    async def validate(self, refs: Iterable[LinkRef]) -> None:
        """Raise :class:`InvalidReference` for the first reference that does not resolve."""
        for ref in refs:
            if not await self.resolve(ref):
                raise InvalidReference(
                    f"{ref.kind.value} {ref.id} does not exist", field=ref.kind.column
                )


def build_default_linker() -> EntityLinker:
    """Linker wired to the directory URLs from settings."""
    urls = {
        LinkKind.PROCEDURE: settings.PROCEDURE_DIRECTORY_URL,
        LinkKind.AGENT: settings.AGENT_DIRECTORY_URL,
        LinkKind.DEPARTMENT: settings.DEPARTMENT_DIRECTORY_URL,
    }
    timeout = settings.LINK_CHECK_TIMEOUT_SECONDS
    directories: dict[LinkKind, ReferenceDirectory] = {
        kind: HttpReferenceDirectory(url, timeout=timeout) for kind, url in urls.items() if url
    }
    missing = [kind.value for kind in LinkKind if kind not in directories]
    if missing:
        logger.warning("No directory configured for %s links; such links will be refused", ", ".join(missing))
    return EntityLinker(directories, timeout=timeout)
