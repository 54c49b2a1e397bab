from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the policy table.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "run_timeout_seconds": 10,
            "compile_timeout_seconds": 30,
            "max_output_kb": 256,
            "memory_limit_mb": 256,
            "images": {},
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    return policy_obj


def _dict_of_str(value: Any, field_name: str) -> dict[str, str]:
    """Validate and normalize a string-to-string policy table.

    Example:
        ```python
        images = _dict_of_str({"python": "python:3.12-slim"}, "images")
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"'{field_name}' must be a table of strings")
    out: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out[str(key)] = item
    return out


def default_max_workers() -> int:
    """Return the default concurrent execution cap for this host.

    Example:
        ```python
        workers = default_max_workers()
        ```
    """
    return min(os.cpu_count() or 1, 8)


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_RUN_TIMEOUT_SECONDS = float(_DEFAULT_POLICY_RAW.get("run_timeout_seconds", 10))
DEFAULT_COMPILE_TIMEOUT_SECONDS = float(_DEFAULT_POLICY_RAW.get("compile_timeout_seconds", 30))
DEFAULT_MAX_OUTPUT_KB = int(_DEFAULT_POLICY_RAW.get("max_output_kb", 256))
DEFAULT_MEMORY_LIMIT_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", 256))
DEFAULT_MAX_QUEUE = int(_DEFAULT_POLICY_RAW.get("max_queue", 32))
DEFAULT_ACQUIRE_TIMEOUT_SECONDS = float(_DEFAULT_POLICY_RAW.get("acquire_timeout_seconds", 10))
DEFAULT_SESSION_IDLE_SECONDS = float(_DEFAULT_POLICY_RAW.get("session_idle_seconds", 300))
DEFAULT_SESSION_SETTLE_MS = int(_DEFAULT_POLICY_RAW.get("session_settle_ms", 200))
DEFAULT_SESSION_ROUND_TIMEOUT_SECONDS = float(
    _DEFAULT_POLICY_RAW.get("session_round_timeout_seconds", 5)
)
DEFAULT_STRICT_COMPILE_DIAGNOSTICS = bool(
    _DEFAULT_POLICY_RAW.get("strict_compile_diagnostics", True)
)
DEFAULT_IMAGES = _dict_of_str(_DEFAULT_POLICY_RAW.get("images", {}), "images")


@dataclass(slots=True)
class RunnerPolicy:
    """Time, output, and capacity limits applied to every execution.

    Example:
        ```python
        policy = RunnerPolicy(run_timeout_seconds=2, max_workers=4)
        ```
    """

    run_timeout_seconds: float = DEFAULT_RUN_TIMEOUT_SECONDS
    compile_timeout_seconds: float = DEFAULT_COMPILE_TIMEOUT_SECONDS
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB
    max_workers: int = field(default_factory=default_max_workers)
    max_queue: int = DEFAULT_MAX_QUEUE
    acquire_timeout_seconds: float = DEFAULT_ACQUIRE_TIMEOUT_SECONDS
    session_idle_seconds: float = DEFAULT_SESSION_IDLE_SECONDS
    session_settle_ms: int = DEFAULT_SESSION_SETTLE_MS
    session_round_timeout_seconds: float = DEFAULT_SESSION_ROUND_TIMEOUT_SECONDS
    strict_compile_diagnostics: bool = DEFAULT_STRICT_COMPILE_DIAGNOSTICS
    scratch_dir: str | None = None
    images: dict[str, str] = field(default_factory=lambda: DEFAULT_IMAGES.copy())
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate limits after dataclass initialization.

        Example:
            ```python
            RunnerPolicy(run_timeout_seconds=1)
            ```
        """
        if self.run_timeout_seconds <= 0 or self.compile_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_queue < 0:
            raise ValueError("max_queue must not be negative")
        if self.max_output_kb < 1:
            raise ValueError("max_output_kb must be at least 1")
        if self.session_idle_seconds <= 0:
            raise ValueError("session_idle_seconds must be positive")

    @property
    def max_output_bytes(self) -> int:
        """Return the per-stream capture cap in bytes.

        Example:
            ```python
            cap = RunnerPolicy(max_output_kb=1).max_output_bytes
            ```
        """
        return self.max_output_kb * 1024

    def image_for(self, language: str) -> str:
        """Return the container image configured for a language.

        Example:
            ```python
            image = RunnerPolicy().image_for("python")
            ```
        """
        image = self.images.get(language)
        if image is None:
            raise ValueError(f"No container image configured for language '{language}'")
        return image

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/tmp/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        images = DEFAULT_IMAGES.copy()
        images.update(_dict_of_str(raw.get("images", {}), "images"))
        scratch_dir = raw.get("scratch_dir")
        if scratch_dir is not None and not isinstance(scratch_dir, str):
            raise ValueError("'scratch_dir' must be a string")
        return cls(
            run_timeout_seconds=float(raw.get("run_timeout_seconds", DEFAULT_RUN_TIMEOUT_SECONDS)),
            compile_timeout_seconds=float(
                raw.get("compile_timeout_seconds", DEFAULT_COMPILE_TIMEOUT_SECONDS)
            ),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB)),
            max_workers=int(raw.get("max_workers", default_max_workers())),
            max_queue=int(raw.get("max_queue", DEFAULT_MAX_QUEUE)),
            acquire_timeout_seconds=float(
                raw.get("acquire_timeout_seconds", DEFAULT_ACQUIRE_TIMEOUT_SECONDS)
            ),
            session_idle_seconds=float(raw.get("session_idle_seconds", DEFAULT_SESSION_IDLE_SECONDS)),
            session_settle_ms=int(raw.get("session_settle_ms", DEFAULT_SESSION_SETTLE_MS)),
            session_round_timeout_seconds=float(
                raw.get("session_round_timeout_seconds", DEFAULT_SESSION_ROUND_TIMEOUT_SECONDS)
            ),
            strict_compile_diagnostics=bool(
                raw.get("strict_compile_diagnostics", DEFAULT_STRICT_COMPILE_DIAGNOSTICS)
            ),
            scratch_dir=scratch_dir,
            images=images,
            config_path=config_path,
        )


def resolve_policy(policy: RunnerPolicy | None, policy_file: str | None) -> RunnerPolicy:
    """Resolve the effective policy object for a dispatcher.

    Example:
        ```python
        policy = resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return RunnerPolicy.from_file(policy_file)
    if policy is None:
        return RunnerPolicy()
    if policy.config_path is not None:
        return RunnerPolicy.from_file(policy.config_path)
    return policy
