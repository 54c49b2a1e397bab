import subprocess
from pathlib import Path

import pytest

from polyglot_runner import DockerEngine
from polyglot_runner.execution.config import container_memory_mb
from polyglot_runner.execution.types import SpawnRequest


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["docker"], returncode=returncode, stdout=stdout, stderr=stderr)


def test_docker_context_conflicts_with_docker_host() -> None:
    with pytest.raises(ValueError, match="either docker_context"):
        DockerEngine(docker_context="remote", docker_host="ssh://user@host")


def test_memory_limit_floor() -> None:
    with pytest.raises(ValueError, match="at least 64"):
        DockerEngine(memory_limit_mb=32)


def test_docker_host_env_is_constructed() -> None:
    engine = DockerEngine(docker_host="tcp://box:2376")
    env = engine._docker_env()  # noqa: SLF001 - validating internal connection config
    assert env["DOCKER_HOST"] == "tcp://box:2376"


def test_compile_phase_gets_memory_floor() -> None:
    assert container_memory_mb(256, "compile") == 1024
    assert container_memory_mb(2048, "compile") == 2048
    assert container_memory_mb(256, "run") == 256


def test_run_command_is_isolated_and_mounts_scratch(tmp_path: Path) -> None:
    engine = DockerEngine(memory_limit_mb=128, docker_context="lab")
    request = SpawnRequest(
        argv=["go", "build", "-o", str(tmp_path / "run_1"), str(tmp_path / "run_1.go")],
        language="go",
        workdir=tmp_path,
        phase="compile",
        env={"GO111MODULE": "off"},
    )
    cmd = engine.run_command(request, image="golang:1.22", container_name="polyglot-runner-compile-1")

    assert cmd[:3] == ["docker", "--context", "lab"]
    assert ["--network", "none"] == cmd[cmd.index("--network") : cmd.index("--network") + 2]
    assert "--cap-drop" in cmd and "ALL" in cmd
    assert f"{tmp_path}:{tmp_path}:rw" in cmd
    assert cmd[cmd.index("--memory") + 1] == "1024m"
    assert "GO111MODULE=off" in cmd
    assert "polyglot_runner.managed=true" in cmd
    assert "polyglot_runner.language=go" in cmd
    image_at = cmd.index("golang:1.22")
    assert cmd[image_at + 1 :] == request.argv


def test_spawn_rejects_language_without_image(tmp_path: Path) -> None:
    engine = DockerEngine(images={})
    with pytest.raises(ValueError, match="No container image"):
        engine.spawn(SpawnRequest(argv=["cobc", "a.cob"], language="cobol", workdir=tmp_path))


def test_preflight_reports_unavailable_daemon(monkeypatch: pytest.MonkeyPatch) -> None:
    from polyglot_runner.execution import docker_engine

    monkeypatch.setattr(
        docker_engine, "docker_is_available", lambda **_: (False, "Docker daemon is not running")
    )
    assert DockerEngine().preflight("python") == "Docker daemon is not running"


def test_preflight_pulls_missing_image_once(monkeypatch: pytest.MonkeyPatch) -> None:
    from polyglot_runner.execution import docker_engine

    calls: list[list[str]] = []

    def _fake_run(self, args: list[str]):
        calls.append(args)
        if args[:2] == ["image", "inspect"]:
            return _completed(returncode=1)
        return _completed()

    monkeypatch.setattr(docker_engine, "docker_is_available", lambda **_: (True, None))
    monkeypatch.setattr(DockerEngine, "_run_docker", _fake_run)
    engine = DockerEngine(images={"python": "python:3.12-slim"})
    assert engine.preflight("python") is None
    assert engine.preflight("python") is None
    assert calls == [["image", "inspect", "python:3.12-slim"], ["pull", "python:3.12-slim"]]


def test_kill_refuses_unmanaged_container(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(DockerEngine, "_run_docker", lambda self, args: _completed(stdout="\n"))
    with pytest.raises(ValueError, match="not managed"):
        DockerEngine().kill_container("someone-elses")


def test_list_and_cleanup_only_touch_exited(monkeypatch: pytest.MonkeyPatch) -> None:
    removed: list[str] = []
    listing = "a1|polyglot-runner-run-1|gcc:13|running|Up 2s\nb2|polyglot-runner-run-2|gcc:13|exited|Exited (0)\n"

    def _fake_run(self, args: list[str]):
        if args[0] == "ps":
            assert "-a" in args
            return _completed(stdout=listing)
        if args[:2] == ["rm", "-f"]:
            removed.append(args[2])
        return _completed()

    monkeypatch.setattr(DockerEngine, "_run_docker", _fake_run)
    engine = DockerEngine()
    assert [c.name for c in engine.list_containers(all_states=True)] == [
        "polyglot-runner-run-1",
        "polyglot-runner-run-2",
    ]
    assert engine.cleanup_stale().removed_containers == 1
    assert removed == ["b2"]
