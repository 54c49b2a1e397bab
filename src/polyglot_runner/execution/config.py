from __future__ import annotations

from dataclasses import dataclass

from ..policy import RunnerPolicy

MANAGED_LABEL_VALUE = "true"
MANAGED_LABELS_BASE = {
    "polyglot_runner.managed": MANAGED_LABEL_VALUE,
    "polyglot_runner.engine": "docker",
    "polyglot_runner.project": "polyglot-runner",
}
CONTAINER_PREFIX = "polyglot-runner"
COMPILE_MEMORY_FLOOR_MB = 1024


@dataclass(frozen=True, slots=True)
class PoolSettings:
    """Admission limits for concurrent executions.

    Example:
        ```python
        settings = PoolSettings(max_workers=4, max_queue=16, acquire_timeout=10)
        ```
    """

    max_workers: int
    max_queue: int
    acquire_timeout: float


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """Snapshot of a managed container returned by DockerEngine.

    Example:
        ```python
        info = ContainerInfo("abc", "polyglot-runner-run_1f", "gcc:13", "running", "Up 2s")
        ```
    """

    id: str
    name: str
    image: str
    state: str
    status: str


@dataclass(frozen=True, slots=True)
class CleanupSummary:
    """Result summary from Docker cleanup operations.

    Example:
        ```python
        summary = CleanupSummary(removed_containers=2)
        ```
    """

    removed_containers: int


def pool_settings_for(policy: RunnerPolicy) -> PoolSettings:
    """Derive worker-pool admission settings from a policy.

    Example:
        ```python
        settings = pool_settings_for(RunnerPolicy(max_workers=2))
        ```
    """
    return PoolSettings(
        max_workers=policy.max_workers,
        max_queue=policy.max_queue,
        acquire_timeout=max(0.0, float(policy.acquire_timeout_seconds)),
    )


def container_memory_mb(memory_limit_mb: int, phase: str) -> int:
    """Return the container memory cap for a phase; toolchains get a floor.

    Example:
        ```python
        mem = container_memory_mb(256, "compile")  # 1024
        ```
    """
    mem = max(64, int(memory_limit_mb))
    if phase == "compile":
        return max(mem, COMPILE_MEMORY_FLOOR_MB)
    return mem
