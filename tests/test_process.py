import os
import sys
import time
from pathlib import Path

from polyglot_runner.execution.context import CancelToken
from polyglot_runner.execution.local_engine import LocalEngine, sanitized_env
from polyglot_runner.execution.process import OutputCursor, StreamingProcess, join_input, run_streamed
from polyglot_runner.execution.types import SpawnRequest


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    try:
        return "\tZ" not in Path(f"/proc/{pid}/status").read_text()
    except OSError:
        return True


def _request(tmp_path: Path, script: str) -> SpawnRequest:
    return SpawnRequest(argv=[sys.executable, "-u", "-c", script], language="python", workdir=tmp_path)


def test_join_input() -> None:
    assert join_input([]) == ""
    assert join_input(["3", "4"]) == "3\n4\n"


def test_sanitized_env_drops_host_secrets(monkeypatch) -> None:
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "hunter2")
    env = sanitized_env({"GO111MODULE": "off"})
    assert "AWS_SECRET_ACCESS_KEY" not in env
    assert env["GO111MODULE"] == "off"
    assert env["PYTHONUNBUFFERED"] == "1"


def test_run_streamed_feeds_stdin_and_captures_streams(tmp_path: Path) -> None:
    script = "import sys\nfor line in sys.stdin:\n    print(int(line) * 2)\nprint('done', file=sys.stderr)"
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, script),
        stdin_text=join_input(["1", "21"]),
        token=CancelToken(),
        timeout_seconds=10,
        max_output_bytes=65536,
    )
    assert outcome.returncode == 0
    assert outcome.stdout == "2\n42\n"
    assert outcome.stderr == "done\n"
    assert outcome.timed_out is False
    assert outcome.error is None


def test_run_streamed_timeout_kills_process_tree(tmp_path: Path) -> None:
    marker = tmp_path / "child.pid"
    script = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        f"open({str(marker)!r}, 'w').write(str(child.pid))\n"
        "print('partial', flush=True)\n"
        "time.sleep(60)\n"
    )
    started = time.monotonic()
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, script),
        stdin_text="",
        token=CancelToken(),
        timeout_seconds=1,
        max_output_bytes=65536,
    )
    assert outcome.timed_out is True
    assert outcome.stdout == "partial\n"
    assert time.monotonic() - started < 10

    child_pid = int(marker.read_text())
    deadline = time.monotonic() + 5
    while _alive(child_pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _alive(child_pid), "grandchild survived the timeout"


def test_run_streamed_truncates_output(tmp_path: Path) -> None:
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, "print('x' * 5000)"),
        stdin_text="",
        token=CancelToken(),
        timeout_seconds=10,
        max_output_bytes=1024,
    )
    assert outcome.truncated is True
    assert len(outcome.stdout) == 1024


def test_output_cap_counts_bytes_not_characters(tmp_path: Path) -> None:
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, "import sys; sys.stdout.buffer.write('\\u00e9'.encode() * 1000)"),
        stdin_text="",
        token=CancelToken(),
        timeout_seconds=10,
        max_output_bytes=1023,
    )
    assert outcome.truncated is True
    assert len(outcome.stdout.encode("utf-8")) <= 1023
    assert outcome.stdout == "\u00e9" * 511


def test_unread_stdin_does_not_block_the_timeout(tmp_path: Path) -> None:
    started = time.monotonic()
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, "import time\nwhile True:\n    time.sleep(0.1)\n"),
        stdin_text="x" * 200_000 + "\n",
        token=CancelToken(),
        timeout_seconds=1,
        max_output_bytes=1024,
    )
    assert outcome.timed_out is True
    assert time.monotonic() - started < 5


def test_run_streamed_reports_spawn_failure(tmp_path: Path) -> None:
    request = SpawnRequest(argv=[str(tmp_path / "missing-binary")], language="c", workdir=tmp_path)
    outcome = run_streamed(
        LocalEngine(),
        request,
        stdin_text="",
        token=CancelToken(),
        timeout_seconds=1,
        max_output_bytes=1024,
    )
    assert outcome.error is not None
    assert outcome.error.startswith("Failed to start process")


def test_cancelled_parent_reports_cancellation(tmp_path: Path) -> None:
    token = CancelToken()
    token.cancel()
    outcome = run_streamed(
        LocalEngine(),
        _request(tmp_path, "import time; time.sleep(30)"),
        stdin_text="",
        token=token,
        timeout_seconds=30,
        max_output_bytes=1024,
    )
    assert outcome.timed_out is False
    assert outcome.error == "Execution cancelled (cancelled)"


def test_streaming_rounds_tile_output(tmp_path: Path) -> None:
    script = "import sys\nprint('ready')\nfor line in sys.stdin:\n    print('echo ' + line.strip())\n"
    proc = StreamingProcess(LocalEngine().spawn(_request(tmp_path, script)), max_output_bytes=65536)
    try:
        proc.wait_for_quiet(1.0, 10)
        first_out, _, cursor = proc.read_since(OutputCursor())
        proc.write("hi\n")
        proc.mark_activity()
        proc.wait_for_quiet(1.0, 10)
        second_out, _, end = proc.read_since(cursor)
    finally:
        proc.kill()
        proc.finish()
    assert first_out == "ready\n"
    assert second_out == "echo hi\n"
    assert cursor.combined == len("ready\n")
    assert end.combined == len("ready\necho hi\n")
