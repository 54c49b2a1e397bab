import os
import shutil
import subprocess
from pathlib import Path

import pytest

from polyglot_runner import Dispatcher, DockerEngine, ExecutionRequest, ExecutionStatus, RunnerPolicy
from polyglot_runner.artifacts import ScratchSpace
from polyglot_runner.classifier import ErrorKind


def _docker_ready() -> bool:
    if shutil.which("docker") is None:
        return False
    return os.getenv("RUN_DOCKER_TESTS") == "1"


pytestmark = pytest.mark.skipif(not _docker_ready(), reason="Docker integration tests disabled")


@pytest.fixture(scope="module")
def typescript_image() -> str:
    root = Path(__file__).resolve().parents[2]
    tag = "polyglot-runner-typescript:local"
    build = subprocess.run(
        ["docker", "build", "-t", tag, str(root / "docker" / "typescript")],
        capture_output=True,
        text=True,
        check=False,
    )
    if build.returncode != 0:
        pytest.skip(f"Could not build typescript image: {build.stderr}")
    return tag


@pytest.fixture
def dispatcher(tmp_path: Path):
    policy = RunnerPolicy(run_timeout_seconds=5, compile_timeout_seconds=120, session_settle_ms=1000)
    engine = DockerEngine(images=policy.images, memory_limit_mb=policy.memory_limit_mb)
    with Dispatcher(engine=engine, policy=policy, scratch=ScratchSpace(tmp_path), start_reaper=False) as d:
        yield d


def test_docker_python_exec(dispatcher: Dispatcher) -> None:
    result = dispatcher.execute(ExecutionRequest(code="print(int(input()) * 3)", language="python", input=("7",)))
    assert result.status is ExecutionStatus.SUCCESS
    assert result.stdout == "21\n"


def test_docker_python_runtime_error(dispatcher: Dispatcher) -> None:
    result = dispatcher.execute(ExecutionRequest(code="print(1/0)", language="python"))
    assert result.error_kind is ErrorKind.DIVISION_BY_ZERO
    assert result.stdout == ""


def test_docker_cpp_compile_and_run(dispatcher: Dispatcher, tmp_path: Path) -> None:
    code = '#include <iostream>\nint main() { std::cout << "Hello, World!" << std::endl; }\n'
    result = dispatcher.execute(ExecutionRequest(code=code, language="cpp"))
    assert result.status is ExecutionStatus.SUCCESS, result.stderr
    assert result.stdout == "Hello, World!\n"
    assert list(tmp_path.iterdir()) == []


def test_docker_java_timeout_leaves_no_container(dispatcher: Dispatcher) -> None:
    code = "public class Main { public static void main(String[] a) { while (true) { } } }\n"
    result = dispatcher.execute(ExecutionRequest(code=code, language="java"))
    assert result.status is ExecutionStatus.TIMEOUT
    running = [c for c in dispatcher.engine.list_containers() if c.state == "running"]
    assert all("-run-" not in c.name for c in running)


def test_docker_network_is_disabled(dispatcher: Dispatcher) -> None:
    code = "import socket\nsocket.create_connection(('1.1.1.1', 53), timeout=2)"
    result = dispatcher.execute(ExecutionRequest(code=code, language="python"))
    assert result.status is ExecutionStatus.RUNTIME_ERROR


def test_docker_typescript(typescript_image: str, dispatcher: Dispatcher) -> None:
    code = "const n: number = 6;\nconsole.log(n * 7);\n"
    result = dispatcher.execute(ExecutionRequest(code=code, language="typescript"))
    assert result.status is ExecutionStatus.SUCCESS, result.stderr
    assert result.stdout == "42\n"


def test_docker_interactive_session(dispatcher: Dispatcher) -> None:
    code = "name = input()\nprint('hello ' + name)"
    first = dispatcher.execute(ExecutionRequest(code=code, language="python", interactive=True))
    assert first.status is ExecutionStatus.RUNNING
    last = dispatcher.execute(ExecutionRequest(code="", language="python", session_id=first.session_id, input=("ada",)))
    assert last.stdout == "hello ada\n"


def test_docker_kill_non_managed_rejected() -> None:
    with pytest.raises(ValueError):
        DockerEngine().kill_container("definitely-not-managed")
