"""The RAPIDS projects and the dependencies between them."""

from pathlib import Path
from typing import Iterable, Mapping, Optional, TypedDict

from rapids_compose.environment import BuildConfig


class ProjectLayout(TypedDict):
    label: str
    cpp_label: str
    upstream: tuple[str, ...]
    cpp_subdir: Optional[str]
    python_subdir: str


# Listed in build order; every project appears after all of its upstreams.
PROJECTS: dict[str, ProjectLayout] = {
    "rmm": {
        "label": "rmm",
        "cpp_label": "librmm",
        "upstream": (),
        "cpp_subdir": None,
        "python_subdir": "python",
    },
    "cudf": {
        "label": "cudf",
        "cpp_label": "libcudf",
        "upstream": ("rmm",),
        "cpp_subdir": "cpp",
        "python_subdir": "python/cudf",
    },
    "cuml": {
        "label": "cuml",
        "cpp_label": "libcuml",
        "upstream": ("cudf",),
        "cpp_subdir": "cpp",
        "python_subdir": "python",
    },
    "cugraph": {
        "label": "cugraph",
        "cpp_label": "libcugraph",
        "upstream": ("cudf",),
        "cpp_subdir": "cpp",
        "python_subdir": "python",
    },
    "cuspatial": {
        "label": "cuspatial",
        "cpp_label": "libcuspatial",
        "upstream": ("cudf",),
        "cpp_subdir": "cpp",
        "python_subdir": "python/cuspatial",
    },
}

PROJECT_ORDER = tuple(PROJECTS)
LINT_PROJECTS = ("rmm", "cudf")
DISPLAY_NAMES = {
    "rmm": "RMM",
    "cudf": "cuDF",
    "cuml": "cuML",
    "cugraph": "cuGraph",
    "cuspatial": "cuSpatial",
}


class Project:
    def __init__(self, name: str, layout: ProjectLayout, home: Path):
        self._name = name
        self._layout = layout
        self._home = home

    def __repr__(self) -> str:
        return f"Project({self._name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Project):
            return NotImplemented
        return self._name == other._name and self._home == other._home

    def __hash__(self) -> int:
        return hash((self._name, self._home))

    @property
    def name(self) -> str:
        return self._name

    @property
    def label(self) -> str:
        return self._layout["label"]

    @property
    def cpp_label(self) -> str:
        return self._layout["cpp_label"]

    @property
    def upstream(self) -> tuple[str, ...]:
        return self._layout["upstream"]

    @property
    def home(self) -> Path:
        return self._home

    @property
    def cpp_home(self) -> Path:
        subdir = self._layout["cpp_subdir"]
        return self._home / subdir if subdir else self._home

    @property
    def python_home(self) -> Path:
        return self._home / self._layout["python_subdir"]


def project_home(name: str, config: BuildConfig) -> Path:
    """``<NAME>_HOME``, or ``$RAPIDS_HOME/<name>`` when it is unset."""
    configured = config.get(f"{name.upper()}_HOME")
    if configured:
        return Path(configured).expanduser()
    rapids_home = config.get("RAPIDS_HOME")
    base = Path(rapids_home).expanduser() if rapids_home else Path.cwd()
    return base / name


def get_project(name: str, config: BuildConfig) -> Project:
    if name not in PROJECTS:
        raise KeyError(f"unknown project '{name}'")
    return Project(name, PROJECTS[name], project_home(name, config))


def closure(
    selection: Iterable[str],
    graph: Optional[Mapping[str, ProjectLayout]] = None,
) -> set[str]:
    """Add every transitive upstream dependency to ``selection``.

    Propagation only goes upward; unknown names are dropped.
    """
    graph = PROJECTS if graph is None else graph
    pending = [name for name in selection if name in graph]
    result: set[str] = set()
    while pending:
        name = pending.pop()
        if name in result:
            continue
        result.add(name)
        pending.extend(dep for dep in graph[name]["upstream"] if dep in graph)
    return result


def plan(selection: Iterable[str], config: BuildConfig) -> list[Project]:
    """The closure of ``selection`` in build order."""
    names = closure(selection)
    return [get_project(name, config) for name in PROJECT_ORDER if name in names]


def check_dependency_graph(
    graph: Optional[Mapping[str, ProjectLayout]] = None,
) -> list[str]:
    """Return problems that would make the fixed build order unsafe.

    Projects with more than one direct upstream are reported too; the build
    order was chosen for a chain with fan-in and has to be reviewed whenever
    the graph branches.
    """
    graph = PROJECTS if graph is None else graph
    problems = []
    seen: set[str] = set()
    for name, layout in graph.items():
        for dep in layout["upstream"]:
            if dep not in graph:
                problems.append(f"{name} depends on unknown project {dep}")
            elif dep not in seen:
                problems.append(f"{name} is ordered before its dependency {dep}")
        if len(layout["upstream"]) > 1:
            problems.append(
                f"{name} has several upstream projects: "
                + ", ".join(layout["upstream"])
            )
        seen.add(name)
    return problems
