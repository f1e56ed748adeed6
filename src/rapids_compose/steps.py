"""Build, clean, lint and test steps for a single project."""

import shutil
from pathlib import Path
from typing import Iterable, Optional, Sequence, TypedDict

from rapids_compose import cmake
from rapids_compose.environment import BuildConfig
from rapids_compose.process import error, heading, info, run_cmd
from rapids_compose.projects import Project
from rapids_compose.toolchain import Toolchain
from rapids_compose.vscode import write_launch_json


PYTHON_CFLAGS = ("-Wno-reorder", "-Wno-unknown-pragmas", "-Wno-unused-variable")
DEPRECATION_CFLAG = "-Wno-deprecated-declarations"
NVSTRINGS_PYTHON_DIR = Path("python") / "nvstrings"
CMAKE_CACHE_FILE_NAME = "CMakeCache.txt"
LINT_SCRIPT = Path("etc") / "rapids" / "lint.sh"
PTVSD_COMMAND = ("python", "-m", "ptvsd", "--host", "0.0.0.0", "--port", "5678", "--wait")


class CleanLayout(TypedDict):
    dirs: list[str]
    artifacts: Optional[str]


# Paths relative to the project home.
PYTHON_CLEAN: dict[str, CleanLayout] = {
    "rmm": {
        "dirs": ["python/dist", "python/build"],
        "artifacts": None,
    },
    "cudf": {
        "dirs": [
            ".pytest_cache",
            "python/cudf/dist",
            "python/cudf/build",
            "python/.hypothesis",
            "python/.pytest_cache",
            "python/cudf/.hypothesis",
            "python/cudf/.pytest_cache",
            "python/dask_cudf/.hypothesis",
            "python/dask_cudf/.pytest_cache",
        ],
        "artifacts": "python/cudf/cudf",
    },
    "cuml": {
        "dirs": [
            "python/dist",
            "python/build",
            "python/.hypothesis",
            "python/.pytest_cache",
            "python/external_repositories",
        ],
        "artifacts": "python/cuml",
    },
    "cugraph": {
        "dirs": [
            "python/dist",
            "python/build",
            "python/.hypothesis",
            "python/.pytest_cache",
        ],
        "artifacts": "python/cugraph",
    },
    "cuspatial": {
        "dirs": [
            "python/.hypothesis",
            "python/.pytest_cache",
            "python/cuspatial/dist",
            "python/cuspatial/build",
            "python/cuspatial/.hypothesis",
            "python/cuspatial/.pytest_cache",
        ],
        "artifacts": "python/cuspatial/cuspatial",
    },
}

NVSTRINGS_CLEAN_DIRS = ("dist", "build", ".hypothesis", ".pytest_cache")

# Python packages tested on their own, keyed by command name: (project, path).
PYTHON_TEST_PACKAGES = {"dask-cudf": ("cudf", "python/dask_cudf")}


def _cudf_targets(library: str, config: BuildConfig) -> list[str]:
    if config.tests:
        return [library, f"build_tests_{library}"]
    return [library]


def build_cpp(
    project: Project,
    config: BuildConfig,
    toolchain: Toolchain,
    cmake_args: Sequence[str] = (),
) -> int:
    """Configure and build the C++ library of ``project``.

    ``cmake_args`` are passed through to the configure step unchanged.
    """
    if project.name == "cudf":
        heading("Configuring libnvstrings and libcudf")
    else:
        heading(f"Configuring {project.cpp_label}")
    result = cmake.configure_cpp(project, config, toolchain, cmake_args)
    if result != 0:
        return result

    if project.name == "cudf":
        result = _build_cudf_cpp(project, config, toolchain)
    else:
        heading(f"Building {project.cpp_label}")
        result = cmake.build_cpp(project, config, ["all"])
    if result != 0:
        return result

    if cmake.cpp_build_type(config) != "release":
        write_launch_json(project.cpp_home, config)
    return 0


def _build_cudf_cpp(project: Project, config: BuildConfig, toolchain: Toolchain) -> int:
    # libcudf links against libnvstrings, so it and its bindings come first.
    heading("Building libnvstrings")
    result = cmake.build_cpp(project, config, _cudf_targets("nvstrings", config))
    if result != 0:
        return result
    result = build_nvstrings_python(project, config, toolchain)
    if result != 0:
        return result

    heading("Building libcudf")
    result = cmake.build_cpp(project, config, _cudf_targets("cudf", config))
    if result != 0:
        return result

    if config.benchmarks:
        bench_result = cmake.build_cpp(project, config, ["benchmarks/all"])
        if bench_result != 0:
            error(f"cudf benchmarks failed to build (exit code {bench_result})")
    return 0


def python_cflags(config: BuildConfig, base: str = "") -> str:
    flags = [base] if base else []
    flags.extend(PYTHON_CFLAGS)
    if config.is_on("DISABLE_DEPRECATION_WARNINGS"):
        flags.append(DEPRECATION_CFLAG)
    return " ".join(flags)


def _remove_egg_info(path: Path) -> None:
    for egg_info in path.glob("*.egg-info"):
        shutil.rmtree(egg_info, ignore_errors=True)


def run_setup_build_ext(
    path: Path,
    config: BuildConfig,
    toolchain: Toolchain,
    extra_args: Sequence[str] = (),
    parallel_level: Optional[int] = None,
) -> int:
    """Run ``setup.py build_ext`` for the Cython bindings in ``path``."""
    try:
        compiler_env = toolchain.compiler_env(config)
    except EOFError:
        error("no GCC version selected")
        return 1
    level = parallel_level if parallel_level is not None else config.parallel_level
    cflags = python_cflags(config, config.get("CFLAGS"))
    cxxflags = f"{config.get('CXXFLAGS')} {cflags}".strip()
    env = config.subprocess_env(
        CFLAGS=cflags,
        CXXFLAGS=cxxflags,
        PARALLEL_LEVEL=str(level),
        **compiler_env,
    )
    command = ["python", "setup.py", "build_ext", f"-j{level}", *extra_args]
    result = run_cmd(command, cwd=path, env=env)
    _remove_egg_info(path)
    return result


def _cache_matches_cuda(build_dir: Path, cuda_version: str) -> bool:
    if not build_dir.is_dir() or not cuda_version:
        return False
    cache = next(build_dir.rglob(CMAKE_CACHE_FILE_NAME), None)
    if cache is None:
        return False
    try:
        return cuda_version in cache.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


def build_nvstrings_python(
    project: Project, config: BuildConfig, toolchain: Toolchain
) -> int:
    heading("Building nvstrings")
    path = project.home / NVSTRINGS_PYTHON_DIR
    build_dir = path / "build"
    if build_dir.exists() and not _cache_matches_cuda(build_dir, config.get("CUDA_VERSION")):
        info(f"removing {build_dir} configured for another CUDA version")
        shutil.rmtree(build_dir, ignore_errors=True)
    extra_args = [f"--build-lib={path}", f"--library-dir={config.get('NVSTRINGS_ROOT')}"]
    return run_setup_build_ext(path, config, toolchain, extra_args, parallel_level=1)


def build_python(project: Project, config: BuildConfig, toolchain: Toolchain) -> int:
    heading(f"Building {project.label}")
    return run_setup_build_ext(project.python_home, config, toolchain, ["--inplace"])


def _remove_tree(path: Path, root: Path) -> None:
    """Remove ``path`` if it lies strictly inside ``root``."""
    resolved = path.resolve() if not path.is_symlink() else path.parent.resolve() / path.name
    resolved_root = root.resolve()
    if resolved == resolved_root or not resolved.is_relative_to(resolved_root):
        raise OSError(f"refusing to remove {path} outside {root}")
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _remove_matching(root: Path, patterns: Iterable[str], directories: bool = False) -> None:
    if not root.is_dir():
        return
    for pattern in patterns:
        for match in list(root.rglob(pattern)):
            if directories and match.is_dir():
                shutil.rmtree(match, ignore_errors=True)
            elif not directories and match.is_file():
                match.unlink()


def _remove_bytecode(root: Path) -> None:
    _remove_matching(root, ["*.pyc"])
    _remove_matching(root, ["__pycache__"], directories=True)


def clean_cpp(project: Project, config: BuildConfig, toolchain: Optional[Toolchain] = None) -> int:
    heading(f"Cleaning {project.cpp_label}")
    try:
        build_home = cmake.cpp_build_home(project, config)
        build_dir = project.cpp_home / cmake.cpp_build_dir(project, config)
        for path in (build_dir, build_home):
            if path.exists() or path.is_symlink():
                info(f"removing {path}")
                _remove_tree(path, project.home)
        if project.name == "cudf":
            nvstrings = project.home / NVSTRINGS_PYTHON_DIR
            for name in NVSTRINGS_CLEAN_DIRS:
                target = nvstrings / name
                if target.exists():
                    _remove_tree(target, project.home)
            _remove_matching(nvstrings, ["*.so"])
            _remove_bytecode(nvstrings)
        _remove_matching(project.home, [".clangd"], directories=True)
    except OSError as exc:
        error(f"failed to clean {project.cpp_label}: {exc}")
        return 1
    return 0


def clean_python(project: Project, config: BuildConfig, toolchain: Optional[Toolchain] = None) -> int:
    heading(f"Cleaning {project.label}")
    layout = PYTHON_CLEAN[project.name]
    try:
        for relative in layout["dirs"]:
            target = project.home / relative
            if target.exists():
                _remove_tree(target, project.home)
        _remove_bytecode(project.home)
        if layout["artifacts"]:
            _remove_matching(project.home / layout["artifacts"], ["*.so", "*.cpp"])
    except OSError as exc:
        error(f"failed to clean {project.label}: {exc}")
        return 1
    return 0


def lint_python(project: Project, config: BuildConfig, toolchain: Optional[Toolchain] = None) -> int:
    heading(f"Linting {project.label}")
    compose_home = config.get("COMPOSE_HOME")
    if not compose_home:
        error("COMPOSE_HOME is not set; cannot find the lint script")
        return 1
    script = Path(compose_home) / LINT_SCRIPT
    return run_cmd(["bash", str(script)], cwd=project.home, env=config.subprocess_env())


def run_python_tests(
    project: Project,
    config: BuildConfig,
    args: Sequence[str],
    path: Optional[Path] = None,
) -> int:
    """Run pytest in ``path`` (the project's binding root by default).

    ``--debug`` starts pytest under ptvsd; every other argument goes to pytest.
    """
    pytest_args = [arg for arg in args if arg != "--debug"]
    if len(pytest_args) != len(args):
        command = [*PTVSD_COMMAND, "-m", "pytest", *pytest_args]
    else:
        command = ["pytest", *pytest_args]
    return run_cmd(command, cwd=path or project.python_home, env=config.subprocess_env())
