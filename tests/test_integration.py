import os
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]


def _run(args, cwd, env=None):
    return subprocess.run(
        [sys.executable, str(ROOT / "main.py"), *args],
        cwd=cwd,
        env=env,
        check=False,
        capture_output=True,
        text=True,
    )


def _clean_env(**overrides):
    env = {
        key: value
        for key, value in os.environ.items()
        if not key.startswith(("BUILD_", "COMPOSE_")) and key != "CMAKE_BUILD_TYPE"
    }
    env.update(overrides)
    return env


@pytest.mark.integration
def test_cli_help_command(tmp_path):
    result = _run(["help"], tmp_path, _clean_env())

    assert result.returncode == 0
    assert "build-rapids" in result.stdout


@pytest.mark.integration
def test_cli_reads_env_file(tmp_path):
    env_file = tmp_path / "compose.env"
    env_file.write_text("CMAKE_BUILD_TYPE=Debug\nBUILD_CUDF=YES\n", encoding="utf-8")

    result = _run(["cpp-build-type", "--env-file", str(env_file)], tmp_path, _clean_env())

    assert result.returncode == 0
    assert result.stdout.strip() == "debug"


@pytest.mark.integration
def test_cli_exported_variable_beats_env_file(tmp_path):
    (tmp_path / ".env").write_text("CMAKE_BUILD_TYPE=Debug\n", encoding="utf-8")

    result = _run(["cpp-build-type"], tmp_path, _clean_env(CMAKE_BUILD_TYPE="Release"))

    assert result.returncode == 0
    assert result.stdout.strip() == "release"


@pytest.mark.integration
def test_cli_unknown_command(tmp_path):
    result = _run(["deploy-rapids"], tmp_path, _clean_env())

    assert result.returncode == 2
    assert "unknown command" in result.stderr
