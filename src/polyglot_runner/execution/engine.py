from __future__ import annotations

from typing import Protocol

from .types import SpawnedProcess, SpawnRequest


class ExecutionEngine(Protocol):
    name: str

    def preflight(self, language: str | None = None) -> str | None:
        """Return a reason the engine cannot run ``language``, or None when ready.

        Example:
            ```python
            reason = engine.preflight("python")
            ```
        """
        ...

    def spawn(self, request: SpawnRequest) -> SpawnedProcess:
        """Start one process with piped stdio and return its handle.

        Example:
            ```python
            spawned = engine.spawn(SpawnRequest(argv=["node", "/tmp/a.js"], language="javascript", workdir=Path("/tmp")))
            ```
        """
        ...
