import sys

from rapids_compose.process import COMMAND_NOT_FOUND, capture_cmd, run_cmd


def test_run_cmd_echoes_and_succeeds(capsys):
    assert run_cmd([sys.executable, "-c", "pass"]) == 0
    assert capsys.readouterr().out.startswith("+ ")


def test_run_cmd_writes_input_to_stdin():
    script = "import sys; sys.exit(0 if sys.stdin.read() == 'rapids\\n' else 4)"

    assert run_cmd([sys.executable, "-c", script], input="rapids\n") == 0


def test_run_cmd_reports_failure(capsys):
    assert run_cmd([sys.executable, "-c", "raise SystemExit(3)"]) == 3
    assert "error: command failed with exit code 3" in capsys.readouterr().err


def test_quiet_run_cmd_only_returns_failure(capsys):
    assert run_cmd([sys.executable, "-c", "raise SystemExit(3)"], quiet=True) == 3
    assert "error:" not in capsys.readouterr().err


def test_run_cmd_missing_executable(capsys):
    assert run_cmd(["rapids-compose-no-such-tool"]) == COMMAND_NOT_FOUND
    assert "command not found" in capsys.readouterr().err


def test_capture_cmd_strips_output():
    assert capture_cmd([sys.executable, "-c", "print(' main ')"]) == "main"
    assert capture_cmd([sys.executable, "-c", "raise SystemExit(1)"]) is None
