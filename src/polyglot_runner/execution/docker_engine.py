from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import uuid
from typing import Mapping

from ..policy import DEFAULT_IMAGES, DEFAULT_MEMORY_LIMIT_MB
from .config import (
    CONTAINER_PREFIX,
    CleanupSummary,
    ContainerInfo,
    MANAGED_LABELS_BASE,
    MANAGED_LABEL_VALUE,
    container_memory_mb,
)
from .types import SpawnedProcess, SpawnRequest

logger = logging.getLogger(__name__)


def docker_is_available(*, docker_env: Mapping[str, str], docker_context: str | None) -> tuple[bool, str | None]:
    """Check Docker CLI and daemon accessibility for the selected target.

    Example:
        ```python
        ok, reason = docker_is_available(docker_env=os.environ, docker_context=None)
        ```
    """
    if shutil.which("docker") is None:
        return False, "Docker CLI was not found. Install Docker and ensure it is on PATH."
    cmd = ["docker"]
    if docker_context:
        cmd.extend(["--context", docker_context])
    cmd.append("info")
    probe = subprocess.run(cmd, capture_output=True, text=True, check=False, env=dict(docker_env))
    if probe.returncode != 0:
        return False, "Docker is installed but the daemon is not running or not accessible."
    return True, None


class DockerEngine:
    """Run every process in its own disposable container.

    The scratch directory is bind-mounted at the same path inside the
    container, so argv built for the host works unchanged.

    Example:
        ```python
        engine = DockerEngine(images={"python": "python:3.12-slim"})
        ```
    """

    name = "docker"

    def __init__(
        self,
        *,
        images: Mapping[str, str] | None = None,
        memory_limit_mb: int | None = None,
        pids_limit: int = 256,
        docker_host: str | None = None,
        docker_context: str | None = None,
    ) -> None:
        """Initialize per-language images, limits, and the Docker target.

        Example:
            ```python
            engine = DockerEngine(docker_context="build-box", memory_limit_mb=512)
            ```
        """
        self._images = dict(DEFAULT_IMAGES)
        self._images.update(images or {})
        self._memory_limit_mb = memory_limit_mb or DEFAULT_MEMORY_LIMIT_MB
        self._pids_limit = pids_limit
        self._docker_host = docker_host
        self._docker_context = docker_context
        self._ready_images: set[str] = set()
        self._lock = threading.Lock()
        self._validate_connection_options()

    def preflight(self, language: str | None = None) -> str | None:
        """Check the daemon and make sure the language image is present locally.

        Example:
            ```python
            reason = engine.preflight("cpp")
            ```
        """
        available, reason = docker_is_available(
            docker_env=self._docker_env(),
            docker_context=self._docker_context,
        )
        if not available:
            return reason
        if language is None:
            return None
        image = self._images.get(language)
        if image is None:
            return f"No container image configured for language '{language}'"
        if not self._ensure_image_available(image):
            return f"Container image '{image}' is not available and could not be pulled"
        return None

    def spawn(self, request: SpawnRequest) -> SpawnedProcess:
        """Start ``request.argv`` inside a fresh container with piped stdio.

        Example:
            ```python
            spawned = engine.spawn(SpawnRequest(argv=["python3", "/tmp/x/a.py"], language="python", workdir=Path("/tmp/x")))
            ```
        """
        image = self._images.get(request.language)
        if image is None:
            raise ValueError(f"No container image configured for language '{request.language}'")
        container_name = f"{CONTAINER_PREFIX}-{request.phase}-{uuid.uuid4().hex[:12]}"
        cmd = self.run_command(request, image=image, container_name=container_name)
        popen = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=self._docker_env(),
            start_new_session=True,
        )
        logger.debug("Started container %s (%s) for %s/%s", container_name, image, request.language, request.phase)

        def _kill() -> None:
            """Kill the container, then the local docker client.

            Example:
                ```python
                spawned.kill()
                ```
            """
            self._run_docker(["kill", container_name])
            if popen.poll() is None:
                popen.kill()

        return SpawnedProcess(popen=popen, kill=_kill, label=container_name)

    def run_command(self, request: SpawnRequest, *, image: str, container_name: str) -> list[str]:
        """Build the ``docker run`` argv for one process.

        Example:
            ```python
            cmd = engine.run_command(request, image="gcc:13", container_name="polyglot-runner-run-1")
            ```
        """
        scratch = str(request.workdir)
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(
            [
                "run",
                "--rm",
                "-i",
                "--name",
                container_name,
                "--network",
                "none",
                "--cap-drop",
                "ALL",
                "--security-opt",
                "no-new-privileges",
                "--pids-limit",
                str(self._pids_limit),
                "--memory",
                f"{container_memory_mb(self._memory_limit_mb, request.phase)}m",
                "-v",
                f"{scratch}:{scratch}:rw",
                "-w",
                scratch,
                "-e",
                "HOME=/tmp",
            ]
        )
        if hasattr(os, "getuid"):
            cmd.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        for key, value in request.env.items():
            cmd.extend(["-e", f"{key}={value}"])
        for key, value in MANAGED_LABELS_BASE.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(["--label", f"polyglot_runner.language={request.language}"])
        cmd.append(image)
        cmd.extend(request.argv)
        return cmd

    def list_containers(self, all_states: bool = False) -> list[ContainerInfo]:
        """List managed containers visible to this engine target.

        Example:
            ```python
            containers = engine.list_containers(all_states=True)
            ```
        """
        fmt = "{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Status}}"
        cmd = ["ps", "--filter", f"label=polyglot_runner.managed={MANAGED_LABEL_VALUE}", "--format", fmt]
        if all_states:
            cmd.insert(1, "-a")
        out = self._run_docker(cmd)
        if out.returncode != 0:
            raise RuntimeError(f"Failed to list containers: {out.stderr.strip()}")
        items: list[ContainerInfo] = []
        for line in out.stdout.splitlines():
            if not line.strip():
                continue
            c_id, name, image, state, status = line.split("|", 4)
            items.append(ContainerInfo(c_id, name, image, state, status))
        return items

    def kill_container(self, container_id: str) -> None:
        """Force-kill a managed container.

        Example:
            ```python
            engine.kill_container("abc123")
            ```
        """
        self._ensure_managed_container(container_id)
        killed = self._run_docker(["kill", container_id])
        if killed.returncode != 0:
            raise RuntimeError(f"Failed to kill container: {killed.stderr.strip()}")

    def cleanup_stale(self) -> CleanupSummary:
        """Delete managed containers that are no longer running.

        Example:
            ```python
            summary = engine.cleanup_stale()
            ```
        """
        removed_containers = 0
        for container in self.list_containers(all_states=True):
            if container.state != "running":
                removed = self._run_docker(["rm", "-f", container.id])
                if removed.returncode == 0:
                    removed_containers += 1
        return CleanupSummary(removed_containers=removed_containers)

    def _ensure_managed_container(self, container_id: str) -> None:
        """Ensure a container is labeled as polyglot-runner managed.

        Example:
            ```python
            engine._ensure_managed_container("abc123")
            ```
        """
        check = self._run_docker(
            [
                "inspect",
                "-f",
                "{{ index .Config.Labels \"polyglot_runner.managed\" }}",
                container_id,
            ]
        )
        if check.returncode != 0 or check.stdout.strip() != MANAGED_LABEL_VALUE:
            raise ValueError(
                f"Container '{container_id}' is not managed by polyglot-runner and cannot be modified"
            )

    def _ensure_image_available(self, image: str) -> bool:
        """Ensure an image exists locally, pulling when needed.

        Example:
            ```python
            ok = engine._ensure_image_available("python:3.12-slim")
            ```
        """
        with self._lock:
            if image in self._ready_images:
                return True
        if self._run_docker(["image", "inspect", image]).returncode != 0:
            logger.info("Pulling container image %s", image)
            if self._run_docker(["pull", image]).returncode != 0:
                return False
        with self._lock:
            self._ready_images.add(image)
        return True

    def _run_docker(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a Docker CLI command against the configured target.

        Example:
            ```python
            completed = engine._run_docker(["ps"])
            ```
        """
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(args)
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            env=self._docker_env(),
        )

    def _docker_env(self) -> dict[str, str]:
        """Build environment variables for Docker CLI targeting.

        Example:
            ```python
            env = engine._docker_env()
            ```
        """
        env = dict(os.environ)
        if self._docker_host:
            env["DOCKER_HOST"] = self._docker_host
        return env

    def _validate_connection_options(self) -> None:
        """Validate mutually exclusive Docker connection settings.

        Example:
            ```python
            engine._validate_connection_options()
            ```
        """
        if self._docker_context and self._docker_host:
            raise ValueError("Use either docker_context or docker_host, not both")
        if self._memory_limit_mb < 64:
            raise ValueError("memory_limit_mb must be at least 64")
