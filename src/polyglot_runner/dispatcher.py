from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Mapping

from .artifacts import ScratchSpace
from .compiled import CompiledRunner
from .execution.config import pool_settings_for
from .execution.engine import ExecutionEngine
from .execution.local_engine import LocalEngine
from .execution.pool import CapacityExceeded, WorkerPool
from .interpreted import InterpretedRunner
from .languages import LanguageKind, get_language
from .policy import RunnerPolicy, resolve_policy
from .result import ExecutionRequest, ExecutionResult
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


class Dispatcher:
    """Single entry point: validate, route by language kind, and return one result.

    Example:
        ```python
        from polyglot_runner import Dispatcher, ExecutionRequest
        dispatcher = Dispatcher()
        result = dispatcher.execute(ExecutionRequest(code="print(2 + 2)", language="python"))
        ```
    """

    def __init__(
        self,
        engine: ExecutionEngine | None = None,
        policy: RunnerPolicy | None = None,
        policy_file: str | None = None,
        *,
        scratch: ScratchSpace | None = None,
        start_reaper: bool = True,
    ) -> None:
        """Wire runners, the worker pool and the session registry to one engine.

        Example:
            ```python
            dispatcher = Dispatcher(engine=DockerEngine(), policy_file="/etc/polyglot/policy.toml")
            ```
        """
        self.policy = resolve_policy(policy, policy_file)
        self.engine: ExecutionEngine = engine if engine is not None else LocalEngine()
        self.scratch = scratch or ScratchSpace(self.policy.scratch_dir)
        self.pool = WorkerPool(pool_settings_for(self.policy))
        self.interpreted = InterpretedRunner(self.engine, self.scratch, self.policy)
        self.compiled = CompiledRunner(self.engine, self.scratch, self.policy)
        self.sessions = SessionRegistry(self.engine, self.scratch, self.policy, start_reaper=start_reaper)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one request to completion (or one interactive round).

        Example:
            ```python
            result = dispatcher.execute(ExecutionRequest(code=src, language="cpp", input=("5",)))
            ```
        """
        if request.session_id is not None:
            return self.sessions.send(request.session_id, request.input)

        spec = get_language(request.language)
        if spec is None:
            return ExecutionResult.unsupported(request.language)
        if request.interactive and spec.kind is not LanguageKind.INTERPRETED:
            return ExecutionResult.unsupported(
                request.language,
                f"Interactive sessions are only available for interpreted languages, not {spec.name}",
            )

        reason = self.engine.preflight(spec.name)
        if reason is not None:
            logger.error("Engine %s cannot run %s: %s", self.engine.name, spec.name, reason)
            return ExecutionResult.internal(reason)

        try:
            slot = self.pool.acquire()
        except CapacityExceeded as exc:
            logger.warning("Rejected %s request: %s", spec.name, exc)
            return ExecutionResult.internal(str(exc))

        if request.interactive:
            return self.sessions.start(request, spec, slot=slot)
        with slot:
            if spec.kind is LanguageKind.COMPILED:
                return self.compiled.run(request, spec)
            return self.interpreted.run(request, spec)

    def execute_payload(self, payload: Mapping[str, Any]) -> ExecutionResult:
        """Validate a JSON request body and execute it.

        Raises :class:`RequestValidationError` for malformed bodies.

        Example:
            ```python
            body = dispatcher.execute_payload({"code": "print(1)", "language": "python", "input": []}).to_response()
            ```
        """
        return self.execute(ExecutionRequest.from_payload(payload))

    def submit(self, request: ExecutionRequest) -> Future[ExecutionResult]:
        """Execute ``request`` on a background thread and return its future.

        Example:
            ```python
            future = dispatcher.submit(request)
            result = future.result()
            ```
        """
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.policy.max_workers + self.policy.max_queue,
                    thread_name_prefix="polyglot-dispatch",
                )
            executor = self._executor
        return executor.submit(self.execute, request)

    def close(self) -> None:
        """Stop interactive sessions and the background executor.

        Example:
            ```python
            dispatcher.close()
            ```
        """
        self.sessions.stop()
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "Dispatcher":
        """Context manager entry.

        Example:
            ```python
            with Dispatcher() as dispatcher: ...
            ```
        """
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        """Close the dispatcher on context exit.

        Example:
            ```python
            with Dispatcher() as dispatcher: ...
            ```
        """
        self.close()
