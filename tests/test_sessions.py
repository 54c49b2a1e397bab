import shutil
import threading
import time
from pathlib import Path

import pytest

from polyglot_runner.artifacts import ScratchSpace
from polyglot_runner.classifier import ErrorKind
from polyglot_runner.execution.config import PoolSettings
from polyglot_runner.execution.local_engine import LocalEngine
from polyglot_runner.execution.pool import WorkerPool
from polyglot_runner.languages import get_language
from polyglot_runner.policy import RunnerPolicy
from polyglot_runner.result import ExecutionRequest, ExecutionStatus
from polyglot_runner.sessions import SessionRegistry

pytestmark = pytest.mark.skipif(shutil.which("python3") is None, reason="python3 not on PATH")

ECHO = "while True:\n    line = input()\n    if line == 'quit':\n        break\n    print('echo:', line)\nprint('bye')\n"


@pytest.fixture
def registry(tmp_path: Path):
    policy = RunnerPolicy(session_settle_ms=500, session_round_timeout_seconds=10, session_idle_seconds=60)
    reg = SessionRegistry(LocalEngine(), ScratchSpace(tmp_path), policy, start_reaper=False)
    yield reg
    reg.stop()


def _start(registry: SessionRegistry, code: str, *lines: str, slot=None):
    request = ExecutionRequest(code=code, language="python", input=lines, interactive=True)
    return registry.start(request, get_language("python"), slot=slot)


def test_echo_session_rounds(registry: SessionRegistry, tmp_path: Path) -> None:
    first = _start(registry, "print('ready')\n" + ECHO)
    assert first.status is ExecutionStatus.RUNNING
    assert first.stdout == "ready\n"
    assert first.session_id in registry
    assert (first.output_offset, first.next_offset) == (0, len("ready\n"))

    second = registry.send(first.session_id, ["hello"])
    assert second.status is ExecutionStatus.RUNNING
    assert second.stdout == "echo: hello\n"
    assert second.output_offset == first.next_offset

    third = registry.send(first.session_id, ["a", "b"])
    assert third.stdout == "echo: a\necho: b\n"

    last = registry.send(first.session_id, ["quit"])
    assert last.status is ExecutionStatus.SUCCESS
    assert last.stdout == "bye\n"
    assert last.output_offset == third.next_offset
    assert first.session_id not in registry
    assert list(tmp_path.iterdir()) == []


def test_initial_input_is_written_on_start(registry: SessionRegistry) -> None:
    first = _start(registry, ECHO, "x")
    assert first.status is ExecutionStatus.RUNNING
    assert first.stdout == "echo: x\n"


def test_program_that_exits_immediately_keeps_no_session(registry: SessionRegistry) -> None:
    result = _start(registry, "print('done')")
    assert result.status is ExecutionStatus.SUCCESS
    assert result.stdout == "done\n"
    assert len(registry) == 0


def test_final_round_classifies_runtime_error(registry: SessionRegistry) -> None:
    first = _start(registry, "n = int(input())\nprint(10 // n)")
    result = registry.send(first.session_id, ["0"])
    assert result.status is ExecutionStatus.RUNTIME_ERROR
    assert result.error_kind is ErrorKind.DIVISION_BY_ZERO
    assert "ZeroDivisionError" in result.stderr


def test_unknown_session_is_not_found(registry: SessionRegistry) -> None:
    result = registry.send("does-not-exist", ["1"])
    assert result.status is ExecutionStatus.SESSION_NOT_FOUND
    assert result.http_status == 404


def test_close_kills_session_and_releases_slot(registry: SessionRegistry) -> None:
    pool = WorkerPool(PoolSettings(max_workers=1, max_queue=0, acquire_timeout=0.1))
    first = _start(registry, ECHO, slot=pool.acquire())
    assert pool.in_use == 1
    assert registry.close(first.session_id) is True
    assert pool.in_use == 0
    assert registry.close(first.session_id) is False
    assert registry.send(first.session_id, ["x"]).status is ExecutionStatus.SESSION_NOT_FOUND


def test_idle_sessions_are_evicted(registry: SessionRegistry) -> None:
    first = _start(registry, ECHO)
    assert registry.evict_idle() == []
    evicted = registry.evict_idle(now=time.monotonic() + 61)
    assert evicted == [first.session_id]
    assert registry.send(first.session_id, ["x"]).status is ExecutionStatus.SESSION_NOT_FOUND


def test_reaper_thread_evicts_in_background(tmp_path: Path) -> None:
    policy = RunnerPolicy(session_settle_ms=300, session_idle_seconds=0.2)
    registry = SessionRegistry(LocalEngine(), ScratchSpace(tmp_path), policy, reaper_interval_seconds=0.05)
    try:
        first = _start(registry, ECHO)
        deadline = time.monotonic() + 5
        while first.session_id in registry and time.monotonic() < deadline:
            time.sleep(0.05)
        assert first.session_id not in registry
    finally:
        registry.stop()
    assert list(tmp_path.iterdir()) == []


def test_unread_input_times_out_the_round(tmp_path: Path) -> None:
    policy = RunnerPolicy(session_settle_ms=200, session_round_timeout_seconds=1, session_idle_seconds=60)
    registry = SessionRegistry(LocalEngine(), ScratchSpace(tmp_path), policy, start_reaper=False)
    pool = WorkerPool(PoolSettings(max_workers=1, max_queue=0, acquire_timeout=0.1))
    try:
        first = _start(registry, "import time\nprint('up')\nwhile True:\n    time.sleep(1)\n", slot=pool.acquire())
        assert first.status is ExecutionStatus.RUNNING

        replies = []
        sender = threading.Thread(target=lambda: replies.append(registry.send(first.session_id, ["y" * 200_000])))
        started = time.monotonic()
        sender.start()
        sender.join(8)
        assert not sender.is_alive(), "send() ignored the round timeout"
        assert time.monotonic() - started < 5

        result = replies[0]
        assert result.status is ExecutionStatus.TIMEOUT
        assert result.session_id == first.session_id
        assert first.session_id not in registry
        assert pool.in_use == 0
        assert registry.send(first.session_id, ["x"]).status is ExecutionStatus.SESSION_NOT_FOUND
    finally:
        registry.stop()
    assert list(tmp_path.iterdir()) == []
