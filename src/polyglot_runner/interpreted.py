from __future__ import annotations

import logging

from .artifacts import ScratchSpace
from .execution.context import CancelToken
from .execution.engine import ExecutionEngine
from .languages import LanguageSpec
from .policy import RunnerPolicy
from .result import ExecutionRequest, ExecutionResult
from .runner import run_program

logger = logging.getLogger(__name__)


class InterpretedRunner:
    """Run interpreted-language submissions in one shot.

    The source is written to a fresh scratch file, the interpreter is
    started with an explicit argv, every input line is written to stdin and
    stdin is closed. The file is deleted whatever the outcome.

    Example:
        ```python
        runner = InterpretedRunner(LocalEngine(), ScratchSpace(), RunnerPolicy())
        result = runner.run(ExecutionRequest(code="print(input())", language="python", input=("hi",)), spec)
        ```
    """

    def __init__(self, engine: ExecutionEngine, scratch: ScratchSpace, policy: RunnerPolicy) -> None:
        """Bind the runner to an engine, scratch space and policy.

        Example:
            ```python
            runner = InterpretedRunner(engine, ScratchSpace(), RunnerPolicy())
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
        """Execute ``request`` with the interpreter described by ``spec``.

        Example:
            ```python
            result = runner.run(request, get_language("python"))
            ```
        """
        token = token or CancelToken()
        try:
            artifacts = self.scratch.allocate(spec)
            self.scratch.write_source(artifacts, request.code)
        except OSError as exc:
            logger.error("Cannot prepare %s source in %s: %s", spec.name, self.scratch.root, exc)
            return ExecutionResult.internal(f"Cannot write source file: {exc}")

        try:
            result = run_program(
                self.engine, spec, artifacts, request.input, policy=self.policy, token=token
            )
        finally:
            self.scratch.release(artifacts)
        result.phases.append("run")
        logger.debug("%s run %s finished: %s", spec.name, artifacts.token, result.status.value)
        return result
