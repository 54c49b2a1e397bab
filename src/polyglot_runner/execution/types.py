from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable


@dataclass(slots=True)
class SpawnRequest:
    """Normalized request for an engine to start one process.

    Example:
        ```python
        req = SpawnRequest(argv=["python3", "/tmp/a.py"], language="python", workdir=Path("/tmp"))
        ```
    """

    argv: list[str]
    language: str
    workdir: Path
    phase: str = "run"
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SpawnedProcess:
    """A started process plus the engine-specific way to kill its whole tree.

    Example:
        ```python
        spawned = SpawnedProcess(popen, kill=lambda: popen.kill(), label="run_ab12")
        ```
    """

    popen: subprocess.Popen[bytes]
    kill: Callable[[], None]
    label: str
    reap: Callable[[], None] | None = None


@dataclass(slots=True)
class ProcessOutcome:
    """Normalized result of one streamed process.

    Example:
        ```python
        out = ProcessOutcome(stdout="hi\\n", stderr="", returncode=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    returncode: int | None
    timed_out: bool
    error: str | None = None
    truncated: bool = False
    duration_ms: int = 0
