#!/usr/bin/env python3
"""Command line for building RAPIDS projects inside the compose dev container."""

import importlib.metadata
import os
import re
import sys
from pathlib import Path
from typing import Optional, Sequence

from rapids_compose import cmake, orchestrator, steps
from rapids_compose.compile_commands import fix_compile_commands
from rapids_compose.environment import (
    BuildConfig,
    find_env_file,
    load_persisted_defaults,
    resolve_build_config,
)
from rapids_compose.process import error, heading, info
from rapids_compose.projects import PROJECTS, get_project
from rapids_compose.toolchain import Toolchain


PACKAGE_NAME = "rapids-compose"
FALLBACK_VERSION = "0.1.0"
PROJECT_COMMAND = re.compile(r"^(build|clean|lint|test)-([a-z-]+)-(cpp|python)$")

ALIASES = {
    "h": "help",
    "br": "build-rapids",
    "cr": "clean-rapids",
    "lr": "lint-rapids",
}

RAPIDS_COMMANDS = {
    "build-rapids": "build",
    "clean-rapids": "clean",
    "lint-rapids": "lint",
}


def usage() -> None:
    print("usage: rapids-compose <command> [options] [args...]")
    print("")
    print("project-wide commands:")
    print("  build-rapids (br)          build each enabled project in dependency order")
    print("  clean-rapids (cr)          remove build artifacts of each enabled project")
    print("  lint-rapids (lr)           lint the rmm and cudf Python sources")
    print("")
    print("per-project commands (project: rmm, cudf, cuml, cugraph, cuspatial):")
    print("  build-<project>-cpp        configure and build the C++ library")
    print("  build-<project>-python     build the Cython bindings")
    print("  clean-<project>-cpp        clean C++ artifacts for the current branch")
    print("  clean-<project>-python     clean Cython build assets")
    print("  lint-<project>-python      lint/fix the Cython and Python sources")
    print("  test-<project>-python      run pytest; remaining args go to pytest")
    print("  test-dask-cudf-python      run pytest for cudf's dask_cudf package")
    print("")
    print("misc:")
    print("  configure-cpp <project>    run CMake configure only")
    print("  fix-nvcc-clangd-compile-commands <project>")
    print("                             rewrite compile_commands.json for clangd")
    print("  cpp-build-type             print the lower-case CMake build type")
    print("  cpp-build-dir <project>    print the C++ build path for the current branch")
    print("  help (h)                   show this help text")
    print("")
    print("options:")
    print("  --rmm --cudf --cuml --cugraph --cuspatial")
    print("                             enable a project (implies its dependencies)")
    print("  -b, --bench                build C++ benchmarks")
    print("  -t, --tests                build C++ unit tests")
    print("      --legacy               build cuDF legacy C++ tests")
    print("  -d, --debug                build with CMAKE_BUILD_TYPE=Debug")
    print("  -r, --release              build with CMAKE_BUILD_TYPE=Release")
    print("  --env-file <path>          read defaults from this .env file")
    print("")
    print("examples:")
    print("  rapids-compose build-rapids --cuml --debug")
    print("  rapids-compose build-rmm-cpp --release --tests")
    print("  rapids-compose clean-rmm-cpp --release")
    print("  rapids-compose test-cudf-python -v -x -k test_groupby")


def _version() -> str:
    try:
        return importlib.metadata.version(PACKAGE_NAME)
    except importlib.metadata.PackageNotFoundError:
        return FALLBACK_VERSION


def _split_env_file_option(args: Sequence[str]) -> tuple[int, Optional[str], list[str]]:
    """Pull ``--env-file`` out of ``args``; everything after ``--`` is kept."""
    env_file = None
    remaining: list[str] = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "--":
            remaining.extend(args[index:])
            break
        if arg == "--env-file":
            if index + 1 >= len(args) or args[index + 1] == "--":
                error("usage: --env-file <path>")
                return 2, None, []
            env_file = args[index + 1]
            index += 2
            continue
        if arg.startswith("--env-file="):
            env_file = arg.split("=", 1)[1]
            if not env_file:
                error("usage: --env-file <path>")
                return 2, None, []
            index += 1
            continue
        remaining.append(arg)
        index += 1
    return 0, env_file, remaining


def load_config(
    args: Sequence[str], env_file: Optional[str] = None
) -> tuple[BuildConfig, list[str]]:
    path = find_env_file(env_file, os.environ, Path.cwd())
    if path is not None and not path.is_file():
        info(f"env file {path} not found; using exported values and defaults")
    persisted = load_persisted_defaults(path)
    return resolve_build_config(persisted, args, os.environ)


def _project_argument(command: str, args: Sequence[str]) -> Optional[str]:
    if len(args) != 1 or args[0] not in PROJECTS:
        error(f"usage: rapids-compose {command} <{'|'.join(PROJECTS)}>")
        return None
    return args[0]


def _strip_separator(args: list[str]) -> list[str]:
    if args and args[0] == "--":
        return args[1:]
    return args


def run_project_command(
    action: str,
    name: str,
    layer: str,
    config: BuildConfig,
    args: Sequence[str],
    toolchain: Toolchain,
) -> int:
    project = get_project(name, config)
    if action == "build" and layer == "cpp":
        return steps.build_cpp(project, config, toolchain, cmake_args=args)
    if action == "build":
        return steps.build_python(project, config, toolchain)
    if action == "clean" and layer == "cpp":
        return steps.clean_cpp(project, config, toolchain)
    if action == "clean":
        return steps.clean_python(project, config, toolchain)
    if action == "lint" and layer == "python":
        return steps.lint_python(project, config, toolchain)
    error(f"unknown command '{action}-{name}-{layer}'")
    return 2


def run_test_command(name: str, layer: str, config: BuildConfig, args: Sequence[str]) -> int:
    if layer != "python":
        error(f"unknown command 'test-{name}-{layer}'")
        return 2
    if name in steps.PYTHON_TEST_PACKAGES:
        project_name, subdir = steps.PYTHON_TEST_PACKAGES[name]
        project = get_project(project_name, config)
        return steps.run_python_tests(project, config, args, project.home / subdir)
    if name not in PROJECTS:
        error(f"unknown project '{name}'")
        usage()
        return 2
    return steps.run_python_tests(get_project(name, config), config, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv if argv is None else argv)
    if len(argv) < 2:
        usage()
        return 2

    command = argv[1]
    if command in {"-v", "--version"}:
        print(f"{PACKAGE_NAME} {_version()}")
        return 0
    command = ALIASES.get(command, command)
    if command in {"help", "-h", "--help"}:
        usage()
        return 0

    result, env_file, args = _split_env_file_option(argv[2:])
    if result != 0:
        return result

    match = PROJECT_COMMAND.match(command)
    if match and match.group(1) == "test":
        # pytest options such as -r, -d and --debug are not build flags.
        config, _ = load_config([], env_file)
        return run_test_command(match.group(2), match.group(3), config, _strip_separator(args))

    config, residual = load_config(args, env_file)
    residual = _strip_separator(residual)
    toolchain = Toolchain()

    if command in RAPIDS_COMMANDS:
        return orchestrator.execute(
            RAPIDS_COMMANDS[command], config, toolchain, cmake_args=residual
        )

    if match:
        action, name, layer = match.groups()
        if name not in PROJECTS:
            error(f"unknown project '{name}'")
            usage()
            return 2
        return run_project_command(action, name, layer, config, residual, toolchain)

    if command == "cpp-build-type":
        print(cmake.cpp_build_type(config))
        return 0
    if command == "cpp-build-dir":
        name = _project_argument(command, residual)
        if name is None:
            return 2
        print(cmake.cpp_build_dir(get_project(name, config), config))
        return 0
    if command == "configure-cpp":
        if not residual or residual[0] not in PROJECTS:
            error(f"usage: rapids-compose configure-cpp <{'|'.join(PROJECTS)}> [cmake args...]")
            return 2
        project = get_project(residual[0], config)
        heading(f"Configuring {project.cpp_label}")
        return cmake.configure_cpp(project, config, toolchain, residual[1:])
    if command == "fix-nvcc-clangd-compile-commands":
        name = _project_argument(command, residual)
        if name is None:
            return 2
        project = get_project(name, config)
        build_dir = project.cpp_home / cmake.cpp_build_dir(project, config)
        return fix_compile_commands(project.cpp_home, build_dir, config)

    error(f"unknown command '{command}'")
    usage()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
