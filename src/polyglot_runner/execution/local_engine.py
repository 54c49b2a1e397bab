from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess

from ..languages import get_language
from .types import SpawnedProcess, SpawnRequest

logger = logging.getLogger(__name__)

_PASSTHROUGH_ENV = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "JAVA_HOME", "GOPATH", "GOCACHE", "CARGO_HOME", "RUSTUP_HOME")


def sanitized_env(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Return a minimal environment for child processes.

    Example:
        ```python
        env = sanitized_env({"GO111MODULE": "off"})
        ```
    """
    env = {key: os.environ[key] for key in _PASSTHROUGH_ENV if os.environ.get(key)}
    env.setdefault("PATH", os.defpath)
    env["PYTHONUNBUFFERED"] = "1"
    if extra:
        env.update(extra)
    return env


def kill_process_group(popen: subprocess.Popen[bytes]) -> None:
    """SIGKILL the process group led by ``popen``, tolerating already-gone groups.

    Example:
        ```python
        kill_process_group(popen)
        ```
    """
    try:
        os.killpg(popen.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    except OSError as exc:
        logger.warning("Failed to kill process group %s: %s", popen.pid, exc)
    if popen.poll() is None:
        try:
            popen.kill()
        except ProcessLookupError:
            pass


class LocalEngine:
    """Run toolchains and programs directly on the host.

    Each process leads its own session so a timeout kills every descendant.

    Example:
        ```python
        engine = LocalEngine()
        ```
    """

    name = "local"

    def preflight(self, language: str | None = None) -> str | None:
        """Report a missing host toolchain for ``language``, or None when ready.

        Example:
            ```python
            reason = LocalEngine().preflight("cpp")
            ```
        """
        spec = get_language(language) if language else None
        if spec is None:
            return None
        for tool in spec.required_tools:
            if shutil.which(tool) is None:
                return f"Toolchain '{tool}' for {spec.name} was not found on PATH"
        return None

    def spawn(self, request: SpawnRequest) -> SpawnedProcess:
        """Start ``request.argv`` with piped stdio in a new process group.

        Example:
            ```python
            spawned = LocalEngine().spawn(SpawnRequest(argv=["bash", "/tmp/a.sh"], language="bash", workdir=Path("/tmp")))
            ```
        """
        popen = subprocess.Popen(
            request.argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(request.workdir),
            env=sanitized_env(request.env),
            start_new_session=True,
        )
        logger.debug("Spawned %s pid=%s for %s/%s", request.argv[0], popen.pid, request.language, request.phase)
        return SpawnedProcess(
            popen=popen,
            kill=lambda: kill_process_group(popen),
            label=str(popen.pid),
            reap=lambda: kill_process_group(popen),
        )
