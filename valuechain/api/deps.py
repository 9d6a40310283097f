from __future__ import annotations

from valuechain.services.entity_linker import EntityLinker, build_default_linker

_linker: EntityLinker | None = None


def get_entity_linker() -> EntityLinker:
    """Process-wide linker wired to the configured directories.

    Tests and embedding applications override this dependency to supply
    their own directories.
    """
    global _linker
    if _linker is None:
        _linker = build_default_linker()
    return _linker
