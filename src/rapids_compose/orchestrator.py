"""Run build, clean or lint across every enabled project in dependency order."""

from functools import partial
from typing import Callable, Literal, Optional, Sequence, TypeAlias

from rapids_compose import steps
from rapids_compose.environment import BuildConfig
from rapids_compose.process import error, heading
from rapids_compose.projects import (
    DISPLAY_NAMES,
    LINT_PROJECTS,
    PROJECT_ORDER,
    Project,
    check_dependency_graph,
    closure,
    plan,
)
from rapids_compose.toolchain import Toolchain


Operation: TypeAlias = Literal["build", "clean", "lint"]
Step: TypeAlias = Callable[[Project, BuildConfig, Toolchain], int]

OPERATIONS: tuple[Operation, ...] = ("build", "clean", "lint")
OPERATION_VERBS = {"build": "Building", "clean": "Cleaning", "lint": "Linting"}


def layer_steps(operation: Operation, cmake_args: Sequence[str] = ()) -> list[Step]:
    """Per-project steps of ``operation``, C++ layer before bindings."""
    if operation == "build":
        build_cpp = steps.build_cpp
        if cmake_args:
            build_cpp = partial(steps.build_cpp, cmake_args=tuple(cmake_args))
        return [build_cpp, steps.build_python]
    if operation == "clean":
        return [steps.clean_cpp, steps.clean_python]
    if operation == "lint":
        return [steps.lint_python]
    raise ValueError(f"unknown operation '{operation}'")


def operation_plan(operation: Operation, config: BuildConfig) -> list[Project]:
    projects = plan(config.projects, config)
    if operation == "lint":
        projects = [project for project in projects if project.name in LINT_PROJECTS]
    return projects


def _summary(operation: Operation, config: BuildConfig) -> str:
    enabled = closure(config.projects)
    names = LINT_PROJECTS if operation == "lint" else PROJECT_ORDER
    states = ", ".join(
        f"{DISPLAY_NAMES[name]}: {'true' if name in enabled else 'false'}"
        for name in names
    )
    return f"{OPERATION_VERBS[operation]} RAPIDS projects: {states}"


def execute(
    operation: Operation,
    config: BuildConfig,
    toolchain: Optional[Toolchain] = None,
    step_overrides: Optional[Sequence[Step]] = None,
    cmake_args: Sequence[str] = (),
) -> int:
    """Run ``operation`` for the closure of the selected projects.

    Each layer runs for every project before the next layer starts. The first
    non-zero status stops the sequence and is returned; completed steps are
    left as they are.
    """
    for problem in check_dependency_graph():
        error(problem)
    toolchain = toolchain if toolchain is not None else Toolchain()
    heading(_summary(operation, config))
    projects = operation_plan(operation, config)
    if step_overrides is not None:
        layers = list(step_overrides)
    else:
        layers = layer_steps(operation, cmake_args)
    for step in layers:
        for project in projects:
            result = step(project, config, toolchain)
            if result != 0:
                return result
    return 0
