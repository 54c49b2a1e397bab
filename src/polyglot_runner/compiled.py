from __future__ import annotations

import logging
import time
from enum import Enum

from .artifacts import ArtifactSet, ScratchSpace
from .execution.context import CancelToken
from .execution.engine import ExecutionEngine
from .execution.process import run_streamed
from .execution.types import ProcessOutcome, SpawnRequest
from .languages import LanguageSpec, expand, rewrite_java_class
from .policy import RunnerPolicy
from .result import ExecutionRequest, ExecutionResult, ExecutionStatus
from .runner import result_from_outcome, run_program

logger = logging.getLogger(__name__)


class CompileStage(str, Enum):
    """States a compiled execution moves through.

    Example:
        ```python
        stage = CompileStage.COMPILE
        ```
    """

    WRITE_SOURCE = "write_source"
    COMPILE = "compile"
    COMPILE_FAILED = "compile_failed"
    RUN = "run"
    RUN_FAILED = "run_failed"
    SUCCESS = "success"
    CLEANUP = "cleanup"


def compile_diagnostics(outcome: ProcessOutcome) -> str:
    """Return compiler diagnostics, falling back to stdout for tools that print there.

    Example:
        ```python
        text = compile_diagnostics(outcome)
        ```
    """
    if outcome.stderr.strip():
        return outcome.stderr
    return outcome.stdout


class CompiledRunner:
    """Write, compile, run and clean up one compiled-language submission.

    Compilation and the run get separate timeouts. The run phase is never
    entered after a failed compile, and cleanup always happens.

    Example:
        ```python
        runner = CompiledRunner(LocalEngine(), ScratchSpace(), RunnerPolicy())
        result = runner.run(ExecutionRequest(code=source, language="cpp"), get_language("cpp"))
        ```
    """

    def __init__(self, engine: ExecutionEngine, scratch: ScratchSpace, policy: RunnerPolicy) -> None:
        """Bind the runner to an engine, scratch space and policy.

        Example:
            ```python
            runner = CompiledRunner(engine, ScratchSpace(), RunnerPolicy())
            ```
        """
        self.engine = engine
        self.scratch = scratch
        self.policy = policy

    def run(
        self,
        request: ExecutionRequest,
        spec: LanguageSpec,
        token: CancelToken | None = None,
    ) -> ExecutionResult:
        """Drive ``request`` through WriteSource, Compile, Run and Cleanup.

        Example:
            ```python
            result = runner.run(request, get_language("java"))
            ```
        """
        token = token or CancelToken()
        started_at = time.monotonic()
        stage = CompileStage.WRITE_SOURCE
        try:
            artifacts = self.scratch.allocate(spec)
            self.scratch.write_source(artifacts, self._prepare_source(request.code, spec, artifacts))
        except OSError as exc:
            logger.error("Cannot prepare %s source in %s: %s", spec.name, self.scratch.root, exc)
            return ExecutionResult.internal(f"Cannot write source file: {exc}")

        phases: list[str] = []
        try:
            stage = CompileStage.COMPILE
            phases.append(stage.value)
            failure = self._compile(spec, artifacts, token)
            if failure is not None:
                stage = CompileStage.COMPILE_FAILED
                result = failure
            else:
                stage = CompileStage.RUN
                phases.append(stage.value)
                result = run_program(
                    self.engine, spec, artifacts, request.input, policy=self.policy, token=token
                )
                stage = CompileStage.SUCCESS if result.ok else CompileStage.RUN_FAILED
        finally:
            leftovers = self.scratch.release(artifacts)
            if leftovers:
                logger.warning("%d artifact(s) of %s left behind", len(leftovers), artifacts.token)
        logger.debug("%s run %s ended in %s", spec.name, artifacts.token, stage.value)
        result.phases = phases
        result.duration_ms = int((time.monotonic() - started_at) * 1000)
        return result

    def _prepare_source(self, code: str, spec: LanguageSpec, artifacts: ArtifactSet) -> str:
        """Rename the main class for languages whose file name must match it.

        Example:
            ```python
            source = runner._prepare_source("public class Main {}", get_language("java"), artifacts)
            ```
        """
        if spec.class_named_source:
            return rewrite_java_class(code, artifacts.token)
        return code

    def _compile(
        self, spec: LanguageSpec, artifacts: ArtifactSet, token: CancelToken
    ) -> ExecutionResult | None:
        """Run the compiler; return a terminal result on failure, None on success.

        Example:
            ```python
            failure = runner._compile(get_language("c"), artifacts, CancelToken())
            ```
        """
        request = SpawnRequest(
            argv=expand(spec.compile, artifacts.template_values()),
            language=spec.name,
            workdir=artifacts.scratch,
            phase="compile",
            env=dict(spec.env),
        )
        outcome = run_streamed(
            self.engine,
            request,
            stdin_text="",
            token=token,
            timeout_seconds=self.policy.compile_timeout_seconds,
            max_output_bytes=self.policy.max_output_bytes,
        )
        if outcome.timed_out or outcome.error is not None:
            return result_from_outcome(outcome, spec.name, phase="compile")
        diagnostics = compile_diagnostics(outcome)
        if outcome.returncode != 0:
            message = f"Compilation failed (exit code {outcome.returncode})"
        elif self.policy.strict_compile_diagnostics and outcome.stderr.strip():
            message = "Compilation produced diagnostics"
        else:
            return None
        logger.info("%s compile of %s failed: %s", spec.name, artifacts.token, message)
        return ExecutionResult(
            status=ExecutionStatus.COMPILE_ERROR,
            stderr=diagnostics,
            exit_code=outcome.returncode,
            message=message,
            output_truncated=outcome.truncated,
        )
