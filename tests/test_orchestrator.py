import pytest  # type: ignore[import-not-found]

from rapids_compose import orchestrator, steps
from rapids_compose.environment import BuildConfig
from rapids_compose.orchestrator import execute, layer_steps, operation_plan
from rapids_compose.toolchain import Toolchain


def _recording_step(log, label, failures=None):
    failures = {} if failures is None else failures

    def step(project, config, toolchain, **kwargs):
        log.append((label, project.name, kwargs))
        return failures.get(project.name, 0)

    return step


@pytest.fixture
def patched_steps(monkeypatch):
    log = []
    failures = {}
    for name in ("build_cpp", "build_python", "clean_cpp", "clean_python", "lint_python"):
        monkeypatch.setattr(steps, name, _recording_step(log, name, failures))
    return log, failures


def _config(*projects):
    return BuildConfig(projects=frozenset(projects), variables={"RAPIDS_HOME": "/rapids"})


def test_build_runs_cpp_layer_before_bindings(patched_steps):
    log, _ = patched_steps

    assert execute("build", _config("cuml"), Toolchain()) == 0

    assert [(label, name) for label, name, _ in log] == [
        ("build_cpp", "rmm"),
        ("build_cpp", "cudf"),
        ("build_cpp", "cuml"),
        ("build_python", "rmm"),
        ("build_python", "cudf"),
        ("build_python", "cuml"),
    ]


def test_first_failure_stops_the_run(patched_steps):
    log, failures = patched_steps
    failures["cudf"] = 2

    config = _config("rmm", "cudf", "cuml", "cugraph", "cuspatial")

    assert execute("build", config, Toolchain()) == 2

    assert [(label, name) for label, name, _ in log] == [
        ("build_cpp", "rmm"),
        ("build_cpp", "cudf"),
    ]
    assert not any(name in {"cuml", "cugraph", "cuspatial"} for _, name, _ in log)


def test_nothing_selected_runs_nothing(patched_steps):
    log, _ = patched_steps

    assert execute("build", _config(), Toolchain()) == 0
    assert log == []


def test_clean_order(patched_steps):
    log, _ = patched_steps

    execute("clean", _config("cudf"), Toolchain())

    assert [(label, name) for label, name, _ in log] == [
        ("clean_cpp", "rmm"),
        ("clean_cpp", "cudf"),
        ("clean_python", "rmm"),
        ("clean_python", "cudf"),
    ]


def test_lint_covers_only_rmm_and_cudf(patched_steps):
    log, _ = patched_steps

    execute("lint", _config("cugraph", "cuspatial"), Toolchain())

    assert [(label, name) for label, name, _ in log] == [
        ("lint_python", "rmm"),
        ("lint_python", "cudf"),
    ]


def test_cmake_args_reach_cpp_builds(patched_steps):
    log, _ = patched_steps

    execute("build", _config("rmm"), Toolchain(), cmake_args=["-DFOO=ON"])

    assert log[0] == ("build_cpp", "rmm", {"cmake_args": ("-DFOO=ON",)})
    assert log[1] == ("build_python", "rmm", {})


def test_step_overrides_replace_layers(patched_steps):
    log, _ = patched_steps
    calls = []

    def only_step(project, config, toolchain):
        calls.append(project.name)
        return 0

    execute("build", _config("cudf"), Toolchain(), step_overrides=[only_step])

    assert calls == ["rmm", "cudf"]
    assert log == []


def test_operation_plan_for_lint_without_selection():
    assert operation_plan("lint", _config()) == []


def test_unknown_operation():
    with pytest.raises(ValueError):
        layer_steps("deploy")


def test_summary_lists_every_project(patched_steps, capsys):
    execute("build", _config("cudf"), Toolchain())

    out = capsys.readouterr().out
    assert "Building RAPIDS projects: RMM: true, cuDF: true, cuML: false" in out


def test_graph_problems_are_reported(patched_steps, monkeypatch, capsys):
    monkeypatch.setattr(orchestrator, "check_dependency_graph", lambda: ["x is broken"])

    assert execute("clean", _config(), Toolchain()) == 0
    assert "error: x is broken" in capsys.readouterr().err
