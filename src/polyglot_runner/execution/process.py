from __future__ import annotations

import codecs
import logging
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable, Sequence

from .context import CANCEL_TIMEOUT, CancelToken
from .engine import ExecutionEngine
from .types import ProcessOutcome, SpawnedProcess, SpawnRequest

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 65536
_READER_JOIN_SECONDS = 2.0


def join_input(lines: Sequence[str]) -> str:
    """Join input lines into the text written to stdin.

    Example:
        ```python
        text = join_input(["3", "4"])  # "3\\n4\\n"
        ```
    """
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


@dataclass(frozen=True, slots=True)
class OutputCursor:
    """Position in a process's output, in characters.

    ``combined`` indexes the interleaved stream; ``stdout`` and ``stderr``
    index the individual streams.

    Example:
        ```python
        cursor = OutputCursor()
        ```
    """

    combined: int = 0
    stdout: int = 0
    stderr: int = 0


class StreamingProcess:
    """Incrementally capture a spawned process's stdout and stderr.

    Two reader threads decode output as it arrives. Besides the per-stream
    accumulators, everything is appended to one combined stream whose
    character offsets frame interactive rounds.

    Example:
        ```python
        proc = StreamingProcess(engine.spawn(request), max_output_bytes=262144)
        ```
    """

    def __init__(self, spawned: SpawnedProcess, *, max_output_bytes: int) -> None:
        """Start reader threads for the spawned process.

        Example:
            ```python
            proc = StreamingProcess(spawned, max_output_bytes=1024)
            ```
        """
        self.spawned = spawned
        self._max_output_bytes = max_output_bytes
        self._cond = threading.Condition()
        self._chunks: dict[str, list[str]] = {"stdout": [], "stderr": []}
        self._byte_counts = {"stdout": 0, "stderr": 0}
        self._lengths = {"stdout": 0, "stderr": 0}
        self._combined_length = 0
        self._last_output_at = time.monotonic()
        self.truncated = False
        self.killed_on_cancel = False
        self._stdin_lock = threading.Lock()
        popen = spawned.popen
        self._readers = [
            threading.Thread(target=self._pump, args=("stdout", popen.stdout), daemon=True),
            threading.Thread(target=self._pump, args=("stderr", popen.stderr), daemon=True),
        ]
        for reader in self._readers:
            reader.start()

    @property
    def pid(self) -> int:
        """Return the pid of the spawned (host-side) process.

        Example:
            ```python
            pid = proc.pid
            ```
        """
        return self.spawned.popen.pid

    def _pump(self, name: str, stream: IO[bytes] | None) -> None:
        """Read one pipe until EOF, decoding into the accumulators.

        Example:
            ```python
            # started by __init__ on a reader thread
            ```
        """
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        read = getattr(stream, "read1", stream.read)
        try:
            while True:
                chunk = read(_CHUNK_SIZE)
                if not chunk:
                    break
                self._append(name, chunk, decoder)
            self._append(name, b"", decoder, final=True)
        except (OSError, ValueError) as exc:
            logger.debug("Reader for %s of %s stopped: %s", name, self.spawned.label, exc)
        finally:
            stream.close()

    def _append(self, name: str, chunk: bytes, decoder: codecs.IncrementalDecoder, *, final: bool = False) -> None:
        """Decode and store raw output, cutting it at the per-stream byte cap.

        The cap is applied to the raw bytes, so multi-byte characters never
        let a stream grow past ``max_output_bytes``.

        Example:
            ```python
            proc._append("stdout", b"hi", decoder)
            ```
        """
        with self._cond:
            used = self._byte_counts[name]
            room = max(0, self._max_output_bytes - used)
            if len(chunk) > room:
                chunk = chunk[:room]
                self.truncated = True
                # a character split by the cap is dropped, not replaced
                text = decoder.decode(chunk)
                decoder.reset()
            else:
                text = decoder.decode(chunk, final=final)
            self._byte_counts[name] = used + len(chunk)
            if not text:
                return
            self._chunks[name].append(text)
            self._lengths[name] += len(text)
            self._combined_length += len(text)
            self._last_output_at = time.monotonic()
            self._cond.notify_all()

    def write(self, text: str) -> bool:
        """Write text to stdin; return False when the process no longer reads it.

        Example:
            ```python
            proc.write("42\\n")
            ```
        """
        stdin = self.spawned.popen.stdin
        if not text or stdin is None:
            return True
        with self._stdin_lock:
            try:
                stdin.write(text.encode("utf-8"))
                stdin.flush()
            except (BrokenPipeError, ValueError, OSError) as exc:
                logger.debug("stdin of %s closed early: %s", self.spawned.label, exc)
                return False
        return True

    def feed(self, text: str, *, close: bool = False) -> threading.Thread:
        """Write ``text`` to stdin on a daemon thread and return that thread.

        A program that never reads its input cannot block the caller; killing
        the process breaks the pipe and ends the write. With ``close=True``
        stdin is closed once the text is written.

        Example:
            ```python
            feeder = proc.feed("1\\n2\\n", close=True)
            feeder.join(timeout=5)
            ```
        """

        def _feed() -> None:
            """Write the text, then close stdin when asked.

            Example:
                ```python
                threading.Thread(target=_feed, daemon=True).start()
                ```
            """
            self.write(text)
            if close:
                self.close_stdin()

        feeder = threading.Thread(target=_feed, name=f"stdin-{self.spawned.label}", daemon=True)
        feeder.start()
        return feeder

    def close_stdin(self) -> None:
        """Close stdin so the program sees end of input.

        Gives up after a short wait when a stuck writer still holds stdin.

        Example:
            ```python
            proc.close_stdin()
            ```
        """
        stdin = self.spawned.popen.stdin
        if stdin is None:
            return
        if not self._stdin_lock.acquire(timeout=_READER_JOIN_SECONDS):
            logger.debug("stdin of %s still busy; leaving it open", self.spawned.label)
            return
        try:
            stdin.close()
        except (BrokenPipeError, OSError):
            pass
        finally:
            self._stdin_lock.release()

    def poll(self) -> int | None:
        """Return the exit code, or None while running.

        Example:
            ```python
            code = proc.poll()
            ```
        """
        return self.spawned.popen.poll()

    def guard(self, token: CancelToken) -> Callable[[], None]:
        """Kill the process when ``token`` is cancelled; return the unregister function.

        Register the guard before feeding stdin so a cancellation is never missed.

        Example:
            ```python
            remove = proc.guard(phase)
            ```
        """

        def _on_cancel(_reason: str) -> None:
            """Kill the process if it is still running when the token fires.

            Example:
                ```python
                token.on_cancel(_on_cancel)
                ```
            """
            if self.poll() is None:
                self.killed_on_cancel = True
                self.kill()

        return token.on_cancel(_on_cancel)

    def wait(self) -> int:
        """Block until the process exits and return its exit code.

        Example:
            ```python
            returncode = proc.wait()
            ```
        """
        return self.spawned.popen.wait()

    def kill(self) -> None:
        """Forcibly terminate the process and everything it started.

        Example:
            ```python
            proc.kill()
            ```
        """
        try:
            self.spawned.kill()
        except OSError as exc:
            logger.warning("Failed to kill %s: %s", self.spawned.label, exc)

    def finish(self) -> None:
        """Reap leftovers after exit and wait for the readers to drain.

        Example:
            ```python
            proc.finish()
            ```
        """
        self.close_stdin()
        if self.spawned.reap is not None:
            self.spawned.reap()
        elif self.poll() is None:
            self.kill()
        for reader in self._readers:
            reader.join(_READER_JOIN_SECONDS)

    def snapshot(self) -> tuple[str, str]:
        """Return everything captured so far as ``(stdout, stderr)``.

        Example:
            ```python
            stdout, stderr = proc.snapshot()
            ```
        """
        with self._cond:
            return "".join(self._chunks["stdout"]), "".join(self._chunks["stderr"])

    def read_since(self, cursor: OutputCursor) -> tuple[str, str, OutputCursor]:
        """Return stdout and stderr captured after ``cursor`` and the cursor that follows.

        The combined offsets of consecutive reads tile the output stream, so
        nothing is returned twice or skipped.

        Example:
            ```python
            stdout, stderr, cursor = proc.read_since(OutputCursor())
            ```
        """
        with self._cond:
            stdout = "".join(self._chunks["stdout"])[cursor.stdout :]
            stderr = "".join(self._chunks["stderr"])[cursor.stderr :]
            end = OutputCursor(
                combined=self._combined_length,
                stdout=self._lengths["stdout"],
                stderr=self._lengths["stderr"],
            )
        return stdout, stderr, end

    def wait_for_quiet(self, settle_seconds: float, timeout_seconds: float) -> None:
        """Block until the process exits or stays silent for ``settle_seconds``.

        Never blocks longer than ``timeout_seconds``.

        Example:
            ```python
            proc.wait_for_quiet(0.2, 5)
            ```
        """
        deadline = time.monotonic() + timeout_seconds
        with self._cond:
            while True:
                now = time.monotonic()
                if now >= deadline:
                    return
                if self.poll() is not None and not any(reader.is_alive() for reader in self._readers):
                    return
                quiet_for = now - self._last_output_at
                if quiet_for >= settle_seconds and self.poll() is None:
                    return
                self._cond.wait(min(deadline - now, max(settle_seconds - quiet_for, 0.02)))

    def outcome(self, returncode: int | None, *, timed_out: bool, started_at: float) -> ProcessOutcome:
        """Freeze the captured output into a :class:`ProcessOutcome`.

        Example:
            ```python
            outcome = proc.outcome(0, timed_out=False, started_at=time.monotonic())
            ```
        """
        stdout, stderr = self.snapshot()
        return ProcessOutcome(
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            timed_out=timed_out,
            truncated=self.truncated,
            duration_ms=int((time.monotonic() - started_at) * 1000),
        )

    def mark_activity(self) -> None:
        """Restart the quiet-period clock, e.g. right after writing input.

        Example:
            ```python
            proc.mark_activity()
            ```
        """
        with self._cond:
            self._last_output_at = time.monotonic()


def run_streamed(
    engine: ExecutionEngine,
    request: SpawnRequest,
    *,
    stdin_text: str,
    token: CancelToken,
    timeout_seconds: float,
    max_output_bytes: int,
) -> ProcessOutcome:
    """Spawn, feed stdin, and wait for one process under its own timeout.

    The timeout starts at spawn time. Whichever of exit or cancellation
    happens first decides the outcome; the other is ignored.

    Example:
        ```python
        outcome = run_streamed(engine, request, stdin_text="1\\n", token=CancelToken(), timeout_seconds=2, max_output_bytes=65536)
        ```
    """
    started_at = time.monotonic()
    try:
        spawned = engine.spawn(request)
    except (OSError, ValueError) as exc:
        logger.error("Failed to start %s for %s: %s", request.argv[0], request.language, exc)
        return ProcessOutcome("", "", None, False, error=f"Failed to start process: {exc}")

    phase = token.child(timeout_seconds)
    proc = StreamingProcess(spawned, max_output_bytes=max_output_bytes)
    remove = proc.guard(phase)
    try:
        proc.feed(stdin_text, close=True)
        returncode = proc.wait()
    finally:
        remove()
        cancelled = phase.close()
        proc.finish()
    interrupted = cancelled and proc.killed_on_cancel
    timed_out = interrupted and phase.reason == CANCEL_TIMEOUT
    outcome = proc.outcome(returncode, timed_out=timed_out, started_at=started_at)
    if interrupted and not timed_out:
        outcome.error = f"Execution cancelled ({phase.reason})"
    return outcome
