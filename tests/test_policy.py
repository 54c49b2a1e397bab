from pathlib import Path

import pytest

from polyglot_runner.policy import DEFAULT_IMAGES, RunnerPolicy, default_max_workers, resolve_policy


def test_defaults_come_from_bundled_toml() -> None:
    policy = RunnerPolicy()
    assert policy.run_timeout_seconds == 10
    assert policy.compile_timeout_seconds == 30
    assert policy.session_idle_seconds == 300
    assert policy.strict_compile_diagnostics is True
    assert policy.max_output_bytes == 256 * 1024
    assert 1 <= policy.max_workers == default_max_workers() <= 8
    assert policy.image_for("cpp") == DEFAULT_IMAGES["cpp"]


def test_from_file_overrides_and_merges_images(tmp_path: Path) -> None:
    path = tmp_path / "policy.toml"
    path.write_text(
        "[policy]\n"
        "run_timeout_seconds = 2\n"
        "max_workers = 3\n"
        "strict_compile_diagnostics = false\n"
        'scratch_dir = "/var/tmp/pgr"\n'
        "[policy.images]\n"
        'python = "python:3.13-slim"\n',
        encoding="utf-8",
    )
    policy = RunnerPolicy.from_file(str(path))
    assert policy.run_timeout_seconds == 2
    assert policy.max_workers == 3
    assert policy.strict_compile_diagnostics is False
    assert policy.scratch_dir == "/var/tmp/pgr"
    assert policy.image_for("python") == "python:3.13-slim"
    assert policy.image_for("java") == DEFAULT_IMAGES["java"]
    assert policy.config_path == str(path)


def test_invalid_values_raise_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="timeouts must be positive"):
        RunnerPolicy(run_timeout_seconds=0)
    with pytest.raises(ValueError, match="max_workers"):
        RunnerPolicy(max_workers=0)

    path = tmp_path / "bad.toml"
    path.write_text('[policy]\nimages = { python = 3 }\n', encoding="utf-8")
    with pytest.raises(ValueError):
        RunnerPolicy.from_file(str(path))


def test_unknown_image_language() -> None:
    with pytest.raises(ValueError, match="No container image"):
        RunnerPolicy().image_for("cobol")


def test_resolve_policy_rejects_both_sources(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="either 'policy' or 'policy_file'"):
        resolve_policy(RunnerPolicy(), str(tmp_path / "p.toml"))
    assert isinstance(resolve_policy(None, None), RunnerPolicy)
