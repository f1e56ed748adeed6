"""VSCode debugger configuration for a project's C++ tests."""

import json
from pathlib import Path
from typing import Any

from rapids_compose.environment import BuildConfig
from rapids_compose.process import error


CUDA_GDB_PATH = "/usr/local/cuda/bin/cuda-gdb"
TEST_NAME_INPUT = "TEST_NAME"


def gtest_dir(cpp_home: Path) -> Path:
    return cpp_home / "build" / "debug" / "gtests"


def list_test_names(tests_dir: Path) -> list[str]:
    """Test binaries in ``tests_dir``; an absent directory has none."""
    if not tests_dir.is_dir():
        return []
    return sorted(entry.name for entry in tests_dir.iterdir())


def render_launch_config(cpp_home: Path, config: BuildConfig) -> dict[str, Any]:
    tests_dir = gtest_dir(cpp_home)
    rapids_home = config.get("RAPIDS_HOME")
    project_name = str(cpp_home)
    if rapids_home and cpp_home.is_relative_to(rapids_home):
        project_name = str(cpp_home.relative_to(rapids_home))
    return {
        "version": "0.2.0",
        "configurations": [
            {
                "name": project_name,
                "type": "cppdbg",
                "request": "launch",
                "stopAtEntry": False,
                "externalConsole": False,
                "cwd": str(cpp_home),
                "envFile": "${workspaceFolder:compose}/.env",
                "MIMode": "gdb",
                "miDebuggerPath": CUDA_GDB_PATH,
                "program": f"{tests_dir}/${{input:{TEST_NAME_INPUT}}}",
                "setupCommands": [
                    {
                        "description": "Enable pretty-printing for gdb",
                        "text": "-enable-pretty-printing",
                        "ignoreFailures": True,
                    }
                ],
                "environment": [],
            }
        ],
        "inputs": [
            {
                "id": TEST_NAME_INPUT,
                "type": "pickString",
                "description": "Please select a test to run",
                "options": list_test_names(tests_dir),
            }
        ],
    }


def write_launch_json(cpp_home: Path, config: BuildConfig) -> int:
    path = cpp_home / ".vscode" / "launch.json"
    contents = json.dumps(render_launch_config(cpp_home, config), indent=4)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{contents}\n", encoding="utf-8")
    except OSError as exc:
        error(f"failed to write {path}: {exc}")
        return 1
    return 0
