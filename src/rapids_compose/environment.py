"""Resolve the build parameters of one invocation.

Values come from three places, merged with this precedence (highest first):

1. flags given on the command line for this invocation
2. variables already exported in the process environment
3. the persisted ``.env`` file of the compose checkout

Anything still missing falls back to a hard-coded default. Resolution never
fails; an unusable value simply falls through to the next source.
"""

import os
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple, TypeAlias, TypedDict

from dotenv import dotenv_values


DEFAULT_BUILD_TYPE = "Release"
DEFAULT_PARALLEL_LEVEL = 4
DEFAULT_ENV_FILE_NAME = ".env"
ENV_FILE_VARIABLE = "COMPOSE_ENV_FILE"
BUILD_TYPES = {"debug": "Debug", "release": "Release"}
TRUTHY_VALUES = {"yes", "on", "true", "1"}

# Environment variable holding the enabled flag for each project.
PROJECT_VARIABLES = {
    "rmm": "BUILD_RMM",
    "cudf": "BUILD_CUDF",
    "cuml": "BUILD_CUML",
    "cugraph": "BUILD_CUGRAPH",
    "cuspatial": "BUILD_CUSPATIAL",
}

PROJECT_FLAGS = {f"--{name}": name for name in PROJECT_VARIABLES}
SWITCH_FLAGS = {
    "-b": "benchmarks",
    "--bench": "benchmarks",
    "-t": "tests",
    "--tests": "tests",
    "--legacy": "legacy_tests",
}
BUILD_TYPE_FLAGS = {
    "-d": "Debug",
    "--debug": "Debug",
    "-r": "Release",
    "--release": "Release",
}

# Variables dropped from the environment handed to build subprocesses.
SUBPROCESS_UNSET = ("CONDA_PREFIX", "NVIDIA_VISIBLE_DEVICES")

Variables: TypeAlias = Mapping[str, str]


class ParsedFlags(TypedDict):
    projects: set[str]
    build_type: Optional[str]
    tests: bool
    benchmarks: bool
    legacy_tests: bool


class BuildConfig:
    """Read-only parameters for a single invocation."""

    def __init__(
        self,
        projects: frozenset[str] = frozenset(),
        build_type: str = DEFAULT_BUILD_TYPE,
        tests: bool = False,
        benchmarks: bool = False,
        legacy_tests: bool = False,
        parallel_level: int = DEFAULT_PARALLEL_LEVEL,
        variables: Optional[Variables] = None,
    ):
        self._projects = frozenset(projects)
        self._build_type = build_type
        self._tests = tests
        self._benchmarks = benchmarks
        self._legacy_tests = legacy_tests
        self._parallel_level = parallel_level
        self._variables = MappingProxyType(dict(variables or {}))

    @property
    def projects(self) -> frozenset[str]:
        return self._projects

    @property
    def build_type(self) -> str:
        return self._build_type

    @property
    def tests(self) -> bool:
        return self._tests

    @property
    def benchmarks(self) -> bool:
        return self._benchmarks

    @property
    def legacy_tests(self) -> bool:
        return self._legacy_tests

    @property
    def parallel_level(self) -> int:
        return self._parallel_level

    @property
    def variables(self) -> Variables:
        return self._variables

    def get(self, name: str, default: str = "") -> str:
        value = self._variables.get(name)
        return value if value else default

    def is_on(self, name: str) -> bool:
        return _truthy(self._variables.get(name))

    def exported(self) -> dict[str, str]:
        """The resolved values in the spelling the build scripts expect."""
        data = {
            variable: "YES" if name in self._projects else "NO"
            for name, variable in PROJECT_VARIABLES.items()
        }
        data.update(
            {
                "CMAKE_BUILD_TYPE": self._build_type,
                "BUILD_TESTS": _on_off(self._tests),
                "BUILD_BENCHMARKS": _on_off(self._benchmarks),
                "BUILD_LEGACY_TESTS": _on_off(self._legacy_tests),
                "PARALLEL_LEVEL": str(self._parallel_level),
            }
        )
        return data

    def subprocess_env(
        self, base: Optional[Variables] = None, **overrides: str
    ) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        env.update(self._variables)
        env.update(self.exported())
        for name in SUBPROCESS_UNSET:
            env.pop(name, None)
        env.update(overrides)
        return env


def _truthy(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in TRUTHY_VALUES


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


def _first_present(name: str, *sources: Variables) -> Optional[str]:
    for source in sources:
        value = source.get(name)
        if value is not None and value != "":
            return value
    return None


def _resolve_build_type(flag: Optional[str], *sources: Variables) -> str:
    if flag:
        return flag
    for source in sources:
        value = source.get("CMAKE_BUILD_TYPE")
        if value and value.strip().lower() in BUILD_TYPES:
            return BUILD_TYPES[value.strip().lower()]
    return DEFAULT_BUILD_TYPE


def _resolve_parallel_level(*sources: Variables) -> int:
    for source in sources:
        value = source.get("PARALLEL_LEVEL")
        if not value:
            continue
        try:
            level = int(value.strip())
        except ValueError:
            continue
        if level > 0:
            return level
    return DEFAULT_PARALLEL_LEVEL


def parse_flags(args: Sequence[str]) -> Tuple[ParsedFlags, list[str]]:
    """Split recognized flags from residual arguments.

    The first build-type flag wins; repeated switches are harmless.
    """
    flags: ParsedFlags = {
        "projects": set(),
        "build_type": None,
        "tests": False,
        "benchmarks": False,
        "legacy_tests": False,
    }
    residual: list[str] = []
    for arg in args:
        if arg in PROJECT_FLAGS:
            flags["projects"].add(PROJECT_FLAGS[arg])
        elif arg in SWITCH_FLAGS:
            flags[SWITCH_FLAGS[arg]] = True
        elif arg in BUILD_TYPE_FLAGS:
            if flags["build_type"] is None:
                flags["build_type"] = BUILD_TYPE_FLAGS[arg]
        else:
            residual.append(arg)
    return flags, residual


def resolve_build_config(
    persisted: Variables,
    args: Sequence[str],
    exported: Variables,
) -> Tuple[BuildConfig, list[str]]:
    """Merge persisted defaults, explicit flags and exported variables."""
    flags, residual = parse_flags(args)

    projects = set(flags["projects"])
    for name, variable in PROJECT_VARIABLES.items():
        if _truthy(_first_present(variable, exported, persisted)):
            projects.add(name)

    def switch(flag: bool, variable: str) -> bool:
        if flag:
            return True
        return _truthy(_first_present(variable, exported, persisted))

    variables = dict(persisted)
    variables.update(exported)
    config = BuildConfig(
        projects=frozenset(projects),
        build_type=_resolve_build_type(flags["build_type"], exported, persisted),
        tests=switch(flags["tests"], "BUILD_TESTS"),
        benchmarks=switch(flags["benchmarks"], "BUILD_BENCHMARKS"),
        legacy_tests=switch(flags["legacy_tests"], "BUILD_LEGACY_TESTS"),
        parallel_level=_resolve_parallel_level(exported, persisted),
        variables=variables,
    )
    return config, residual


def load_persisted_defaults(path: Optional[Path]) -> dict[str, str]:
    """Read KEY=VALUE pairs from a ``.env`` file; missing files yield nothing."""
    if path is None or not path.is_file():
        return {}
    try:
        values = dotenv_values(path)
    except (OSError, UnicodeDecodeError):
        return {}
    return {key: value for key, value in values.items() if value is not None}


def find_env_file(
    explicit: Optional[str],
    environ: Variables,
    start_dir: Path,
) -> Optional[Path]:
    if explicit:
        return Path(explicit).expanduser()
    configured = environ.get(ENV_FILE_VARIABLE)
    if configured:
        return Path(configured).expanduser()
    compose_home = environ.get("COMPOSE_HOME")
    if compose_home:
        candidate = Path(compose_home).expanduser() / DEFAULT_ENV_FILE_NAME
        if candidate.is_file():
            return candidate
    current = Path(start_dir).resolve()
    while True:
        candidate = current / DEFAULT_ENV_FILE_NAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        current = current.parent
