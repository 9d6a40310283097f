"""Error taxonomy shared by the graph store, entity linker and lifecycle manager.

Services raise these; the API layer renders them through a single exception
handler as ``{"detail": ..., "field": ...}`` with the class's status code.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse


class ValueChainError(Exception):
    status_code = 500

    def __init__(self, detail: str, *, field: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field

    def to_dict(self) -> dict:
        body: dict = {"detail": self.detail}
        if self.field is not None:
            body["field"] = self.field
        return body


class NotFound(ValueChainError):
    """A map, node or edge id does not exist."""

    status_code = 404


class InvalidReference(ValueChainError):
    """A weak link does not resolve, or an edge endpoint is outside the map."""

    status_code = 422


class Conflict(ValueChainError):
    """The version check on a metric/link update failed; re-fetch and retry."""

    status_code = 409


class Unavailable(ValueChainError):
    """A linked-record directory did not answer in time; retry with backoff."""

    status_code = 503


class InvalidArgument(ValueChainError):
    """Caller error that cannot be repaired, e.g. a non-numeric metric."""

    status_code = 400


async def value_chain_error_handler(request, exc: ValueChainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
