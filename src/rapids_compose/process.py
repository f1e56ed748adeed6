"""Console output and subprocess helpers shared by every command."""

import shlex
import subprocess
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence


COMMAND_NOT_FOUND = 127


def info(message: str) -> None:
    """Print a standard informational message."""
    print(f"[rapids-compose] {message}")


def error(message: str) -> None:
    """Print a standardized error message to stderr."""
    print(f"error: {message}", file=sys.stderr)


def heading(message: str) -> None:
    print(f"\n\n################\n#\n# {message} \n#\n################\n\n")


def run_cmd(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    input: Optional[str] = None,
    quiet: bool = False,
) -> int:
    """Run a subprocess command and return the exit code.

    ``input`` is written to the command's stdin. With ``quiet`` a failure is
    only returned, not reported.
    """
    print("+", " ".join(shlex.quote(part) for part in cmd))
    try:
        subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            check=True,
            env=env,
            input=input,
            text=input is not None,
        )
    except subprocess.CalledProcessError as exc:
        if not quiet:
            error(f"command failed with exit code {exc.returncode}")
        return exc.returncode
    except FileNotFoundError:
        if not quiet:
            error(f"command not found: {cmd[0]}")
        return COMMAND_NOT_FOUND
    return 0


def capture_cmd(cmd: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
    """Run a command quietly and return its stripped stdout, or None on failure."""
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return result.stdout.strip()
