from pathlib import Path

import pytest  # type: ignore[import-not-found]

from rapids_compose.environment import BuildConfig
from rapids_compose.projects import (
    PROJECT_ORDER,
    PROJECTS,
    check_dependency_graph,
    closure,
    get_project,
    plan,
)


def _layout(*upstream):
    return {
        "label": "x",
        "cpp_label": "libx",
        "upstream": tuple(upstream),
        "cpp_subdir": "cpp",
        "python_subdir": "python",
    }


@pytest.mark.parametrize(
    "selection, expected",
    [
        (set(), set()),
        ({"rmm"}, {"rmm"}),
        ({"cudf"}, {"rmm", "cudf"}),
        ({"cuml"}, {"rmm", "cudf", "cuml"}),
        ({"cugraph", "cuspatial"}, {"rmm", "cudf", "cugraph", "cuspatial"}),
    ],
)
def test_closure_adds_upstream_projects(selection, expected):
    assert closure(selection) == expected


def test_closure_never_adds_downstream_projects():
    assert "cuml" not in closure({"cudf"})
    assert closure({"rmm"}) == {"rmm"}


def test_closure_is_idempotent():
    once = closure({"cuspatial"})

    assert closure(once) == once


def test_closure_on_branching_graph():
    graph = {
        "base": _layout(),
        "left": _layout("base"),
        "right": _layout("base"),
        "top": _layout("left", "right"),
    }

    assert closure({"top"}, graph) == {"base", "left", "right", "top"}


def test_plan_follows_build_order():
    config = BuildConfig(variables={"RAPIDS_HOME": "/rapids"})

    projects = plan({"cuspatial", "cuml"}, config)

    assert [project.name for project in projects] == ["rmm", "cudf", "cuml", "cuspatial"]


def test_every_upstream_precedes_its_dependents():
    position = {name: index for index, name in enumerate(PROJECT_ORDER)}
    for name, layout in PROJECTS.items():
        for dep in layout["upstream"]:
            assert position[dep] < position[name]


def test_project_paths():
    config = BuildConfig(variables={"RAPIDS_HOME": "/rapids"})

    rmm = get_project("rmm", config)
    cudf = get_project("cudf", config)
    cuspatial = get_project("cuspatial", config)

    assert rmm.cpp_home == Path("/rapids/rmm")
    assert rmm.python_home == Path("/rapids/rmm/python")
    assert cudf.cpp_home == Path("/rapids/cudf/cpp")
    assert cudf.python_home == Path("/rapids/cudf/python/cudf")
    assert cuspatial.python_home == Path("/rapids/cuspatial/python/cuspatial")


def test_project_home_override():
    config = BuildConfig(
        variables={"RAPIDS_HOME": "/rapids", "CUML_HOME": "/work/cuml-fork"}
    )

    assert get_project("cuml", config).home == Path("/work/cuml-fork")


def test_unknown_project():
    with pytest.raises(KeyError):
        get_project("cupy", BuildConfig())


def test_shipped_graph_is_consistent():
    assert check_dependency_graph() == []


def test_check_dependency_graph_reports_problems():
    graph = {
        "late": _layout("base"),
        "base": _layout(),
        "ghost": _layout("missing"),
        "top": _layout("base", "late"),
    }

    problems = check_dependency_graph(graph)

    assert "late is ordered before its dependency base" in problems
    assert "ghost depends on unknown project missing" in problems
    assert "top has several upstream projects: base, late" in problems
