from __future__ import annotations

from .artifacts import ArtifactSet
from .classifier import classify, describe
from .execution.context import CancelToken
from .execution.engine import ExecutionEngine
from .execution.process import join_input, run_streamed
from .execution.types import ProcessOutcome, SpawnRequest
from .languages import LanguageSpec, expand
from .policy import RunnerPolicy
from .result import ExecutionResult, ExecutionStatus


def result_from_outcome(outcome: ProcessOutcome, language: str, *, phase: str = "run") -> ExecutionResult:
    """Turn a finished run-phase process into an :class:`ExecutionResult`.

    Example:
        ```python
        result = result_from_outcome(outcome, "python")
        ```
    """
    base = {
        "stdout": outcome.stdout,
        "stderr": outcome.stderr,
        "exit_code": outcome.returncode,
        "duration_ms": outcome.duration_ms,
        "output_truncated": outcome.truncated,
    }
    if outcome.timed_out:
        return ExecutionResult(
            status=ExecutionStatus.TIMEOUT,
            message=f"Execution timed out during {phase}",
            **base,  # type: ignore[arg-type]
        )
    if outcome.error is not None:
        return ExecutionResult(status=ExecutionStatus.INTERNAL_ERROR, message=outcome.error, **base)  # type: ignore[arg-type]
    if outcome.returncode == 0:
        return ExecutionResult(status=ExecutionStatus.SUCCESS, **base)  # type: ignore[arg-type]
    kind = classify(outcome.returncode, outcome.stderr, language)
    return ExecutionResult(
        status=ExecutionStatus.RUNTIME_ERROR,
        error_kind=kind,
        message=describe(kind, outcome.returncode),
        **base,  # type: ignore[arg-type]
    )


def run_program(
    engine: ExecutionEngine,
    spec: LanguageSpec,
    artifacts: ArtifactSet,
    lines: tuple[str, ...],
    *,
    policy: RunnerPolicy,
    token: CancelToken,
) -> ExecutionResult:
    """Run the language's run command against prepared artifacts, one shot.

    Example:
        ```python
        result = run_program(engine, get_language("python"), artifacts, ("1",), policy=policy, token=CancelToken())
        ```
    """
    request = SpawnRequest(
        argv=expand(spec.run, artifacts.template_values()),
        language=spec.name,
        workdir=artifacts.scratch,
        phase="run",
        env=dict(spec.env),
    )
    outcome = run_streamed(
        engine,
        request,
        stdin_text=join_input(lines),
        token=token,
        timeout_seconds=policy.run_timeout_seconds,
        max_output_bytes=policy.max_output_bytes,
    )
    return result_from_outcome(outcome, spec.name)
