from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field

from .artifacts import ArtifactSet, ScratchSpace
from .execution.engine import ExecutionEngine
from .execution.pool import Slot
from .execution.process import OutputCursor, StreamingProcess, join_input
from .execution.types import ProcessOutcome, SpawnRequest
from .languages import LanguageSpec, expand
from .policy import RunnerPolicy
from .result import ExecutionRequest, ExecutionResult, ExecutionStatus
from .runner import result_from_outcome

logger = logging.getLogger(__name__)

DEFAULT_REAPER_INTERVAL_SECONDS = 30.0


@dataclass(slots=True, eq=False)
class Session:
    """One live interactive process and its output cursor.

    Example:
        ```python
        session = registry.get(session_id)
        ```
    """

    session_id: str
    language: str
    process: StreamingProcess
    artifacts: ArtifactSet
    slot: Slot | None
    started_at: float
    last_active: float
    cursor: OutputCursor = field(default_factory=OutputCursor)
    lock: threading.Lock = field(default_factory=threading.Lock)
    closed: bool = False

    def idle_for(self, now: float | None = None) -> float:
        """Return seconds since the last round finished.

        Example:
            ```python
            idle = session.idle_for()
            ```
        """
        return (now if now is not None else time.monotonic()) - self.last_active


def session_not_found(session_id: str) -> ExecutionResult:
    """Build the result for an unknown, finished or evicted session.

    Example:
        ```python
        result = session_not_found("abc")
        ```
    """
    return ExecutionResult(
        status=ExecutionStatus.SESSION_NOT_FOUND,
        message=f"Session not found: {session_id}",
        session_id=session_id,
    )


class SessionRegistry:
    """Interactive sessions keyed by id, with idle eviction.

    Each session keeps its process's stdin open between rounds. A round
    writes the given lines, waits until the program exits or goes quiet
    for ``session_settle_ms``, and returns exactly the output produced
    since the previous round. A background reaper kills sessions idle
    longer than ``session_idle_seconds``.
    A program that leaves its input unread past
    ``session_round_timeout_seconds`` is killed and the round reports a
    timeout.

    Example:
        ```python
        registry = SessionRegistry(LocalEngine(), ScratchSpace(), RunnerPolicy())
        first = registry.start(ExecutionRequest(code=src, language="python", interactive=True), spec)
        reply = registry.send(first.session_id, ["42"])
        ```
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        scratch: ScratchSpace,
        policy: RunnerPolicy,
        *,
        reaper_interval_seconds: float | None = None,
        start_reaper: bool = True,
    ) -> None:
        """Create an empty registry and, unless disabled, its reaper thread.

        Example:
            ```python
            registry = SessionRegistry(engine, ScratchSpace(), RunnerPolicy(), start_reaper=False)
            ```
        """
        self.engine = engine
        self.scratch = scratch
        self.policy = policy
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._stop_reaper = threading.Event()
        self._reaper: threading.Thread | None = None
        if reaper_interval_seconds is None:
            reaper_interval_seconds = min(DEFAULT_REAPER_INTERVAL_SECONDS, policy.session_idle_seconds / 2)
        self.reaper_interval_seconds = reaper_interval_seconds
        if start_reaper:
            self._start_reaper()

    def __len__(self) -> int:
        """Return the number of live sessions.

        Example:
            ```python
            live = len(registry)
            ```
        """
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        """Return True when ``session_id`` names a live session.

        Example:
            ```python
            alive = "abc" in registry
            ```
        """
        with self._lock:
            return session_id in self._sessions

    def start(self, request: ExecutionRequest, spec: LanguageSpec, slot: Slot | None = None) -> ExecutionResult:
        """Start an interactive program and return its first round.

        ``slot`` is held for the session's whole life and released when it
        ends. A program that already exited yields its terminal result and
        no session is kept.

        Example:
            ```python
            result = registry.start(request, get_language("python"), slot=pool.acquire())
            ```
        """
        try:
            artifacts = self.scratch.allocate(spec)
            self.scratch.write_source(artifacts, request.code)
        except OSError as exc:
            logger.error("Cannot prepare %s session source: %s", spec.name, exc)
            if slot is not None:
                slot.release()
            return ExecutionResult.internal(f"Cannot write source file: {exc}")

        spawn_request = SpawnRequest(
            argv=expand(spec.run, artifacts.template_values()),
            language=spec.name,
            workdir=artifacts.scratch,
            phase="run",
            env=dict(spec.env),
        )
        try:
            spawned = self.engine.spawn(spawn_request)
        except (OSError, ValueError) as exc:
            logger.error("Failed to start %s session: %s", spec.name, exc)
            self.scratch.release(artifacts)
            if slot is not None:
                slot.release()
            return ExecutionResult.internal(f"Failed to start process: {exc}")

        now = time.monotonic()
        session = Session(
            session_id=uuid.uuid4().hex,
            language=spec.name,
            process=StreamingProcess(spawned, max_output_bytes=self.policy.max_output_bytes),
            artifacts=artifacts,
            slot=slot,
            started_at=now,
            last_active=now,
        )
        with session.lock:
            result = self._round(session, request.input)
            if result.status is ExecutionStatus.RUNNING:
                with self._lock:
                    self._sessions[session.session_id] = session
                logger.info("Session %s started (%s)", session.session_id, spec.name)
            else:
                self._destroy(session)
        return result

    def send(self, session_id: str, lines: tuple[str, ...] | list[str] = ()) -> ExecutionResult:
        """Feed input lines to a live session and return the output they produced.

        Example:
            ```python
            result = registry.send(session_id, ["3", "4"])
            ```
        """
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            return session_not_found(session_id)
        with session.lock:
            if session.closed:
                return session_not_found(session_id)
            result = self._round(session, tuple(lines))
            if result.status is not ExecutionStatus.RUNNING:
                self._forget(session)
                self._destroy(session)
        return result

    def close(self, session_id: str) -> bool:
        """Kill a session's process and forget it; return False when unknown.

        Example:
            ```python
            registry.close(session_id)
            ```
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        with session.lock:
            self._destroy(session)
        logger.info("Session %s closed", session_id)
        return True

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Kill every session idle longer than ``session_idle_seconds``.

        Sessions in the middle of a round are skipped.

        Example:
            ```python
            evicted = registry.evict_idle()
            ```
        """
        now = time.monotonic() if now is None else now
        expired: list[Session] = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session.idle_for(now) <= self.policy.session_idle_seconds:
                    continue
                if not session.lock.acquire(blocking=False):
                    continue
                del self._sessions[session_id]
                expired.append(session)
        for session in expired:
            try:
                self._destroy(session)
            finally:
                session.lock.release()
            logger.info("Session %s evicted after %.0fs idle", session.session_id, session.idle_for(now))
        return [session.session_id for session in expired]

    def stop(self) -> None:
        """Stop the reaper and kill every live session.

        Example:
            ```python
            registry.stop()
            ```
        """
        self._stop_reaper.set()
        if self._reaper is not None:
            self._reaper.join(timeout=5)
            self._reaper = None
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            with session.lock:
                self._destroy(session)
        if sessions:
            logger.info("Stopped %d live session(s)", len(sessions))

    def _round(self, session: Session, lines: tuple[str, ...]) -> ExecutionResult:
        """Write ``lines``, wait for the round to settle and frame its output.

        Caller must hold ``session.lock``.

        Example:
            ```python
            result = registry._round(session, ("42",))
            ```
        """
        proc = session.process
        round_timeout = self.policy.session_round_timeout_seconds
        deadline = time.monotonic() + round_timeout
        stalled = False
        if lines:
            feeder = proc.feed(join_input(lines))
            feeder.join(round_timeout)
            if feeder.is_alive():
                logger.warning(
                    "Session %s did not read its input within %.1fs; killing it",
                    session.session_id,
                    round_timeout,
                )
                proc.kill()
                stalled = True
        proc.mark_activity()
        if not stalled:
            proc.wait_for_quiet(self.policy.session_settle_ms / 1000, max(0.0, deadline - time.monotonic()))
        returncode = proc.poll()
        if returncode is not None or stalled:
            proc.finish()
            returncode = proc.poll()
        stdout, stderr, next_cursor = proc.read_since(session.cursor)
        offset = session.cursor.combined
        session.cursor = next_cursor
        session.last_active = time.monotonic()

        if returncode is None and not stalled:
            result = ExecutionResult(
                status=ExecutionStatus.RUNNING,
                stdout=stdout,
                stderr=stderr,
                output_truncated=proc.truncated,
            )
        else:
            outcome = ProcessOutcome(
                stdout=stdout,
                stderr=stderr,
                returncode=returncode,
                timed_out=stalled,
                truncated=proc.truncated,
            )
            result = result_from_outcome(outcome, session.language)
        result.session_id = session.session_id
        result.output_offset = offset
        result.next_offset = next_cursor.combined
        result.duration_ms = int((session.last_active - session.started_at) * 1000)
        result.phases = ["run"]
        return result

    def _forget(self, session: Session) -> None:
        """Remove ``session`` from the map if it is still registered.

        Example:
            ```python
            registry._forget(session)
            ```
        """
        with self._lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]

    def _destroy(self, session: Session) -> None:
        """Kill the process, delete its files and free its pool slot.

        Example:
            ```python
            registry._destroy(session)
            ```
        """
        if session.closed:
            return
        session.closed = True
        if session.process.poll() is None:
            session.process.kill()
        session.process.finish()
        self.scratch.release(session.artifacts)
        if session.slot is not None:
            session.slot.release()

    def _start_reaper(self) -> None:
        """Start the daemon thread that evicts idle sessions.

        Example:
            ```python
            registry._start_reaper()
            ```
        """

        def _reap_loop() -> None:
            """Evict idle sessions until the registry stops.

            Example:
                ```python
                threading.Thread(target=_reap_loop, daemon=True).start()
                ```
            """
            while not self._stop_reaper.wait(self.reaper_interval_seconds):
                try:
                    self.evict_idle()
                except OSError as exc:
                    logger.error("Session reaper error: %s", exc)

        self._reaper = threading.Thread(target=_reap_loop, name="polyglot-session-reaper", daemon=True)
        self._reaper.start()
        logger.debug("Session reaper started (every %.1fs)", self.reaper_interval_seconds)
