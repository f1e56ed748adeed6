"""CMake configure and build for the C++ layer of each project."""

from pathlib import Path
from typing import Optional, Sequence, TypeAlias

from rapids_compose.compile_commands import fix_compile_commands, make_symlink
from rapids_compose.environment import BuildConfig
from rapids_compose.process import capture_cmd, error, info, run_cmd
from rapids_compose.projects import Project
from rapids_compose.toolchain import GccSelection, Toolchain


DEFAULT_CMAKE_GENERATOR = "Ninja"
DEFAULT_CUDA_VERSION = "10.0"
DEFAULT_BRANCH_NAME = "detached"

# Path variables forwarded from the environment to every configure step.
PATH_ARGUMENTS = (
    ("RMM_LIBRARY", "RMM_LIBRARY"),
    ("CUDF_LIBRARY", "CUDF_LIBRARY"),
    ("CUDFTESTUTIL_LIBRARY", "CUDFTESTUTIL_LIBRARY"),
    ("CUML_LIBRARY", "CUML_LIBRARY"),
    ("CUGRAPH_LIBRARY", "CUGRAPH_LIBRARY"),
    ("CUSPATIAL_LIBRARY", "CUSPATIAL_LIBRARY"),
    ("NVSTRINGS_LIBRARY", "NVSTRINGS_LIBRARY"),
    ("NVCATEGORY_LIBRARY", "NVCATEGORY_LIBRARY"),
    ("NVTEXT_LIBRARY", "NVTEXT_LIBRARY"),
    ("RMM_INCLUDE", "RMM_INCLUDE"),
    ("CUDF_INCLUDE", "CUDF_INCLUDE"),
    ("CUDF_TEST_INCLUDE", "CUDF_TEST_INCLUDE"),
    ("CUML_INCLUDE_DIR", "CUML_INCLUDE"),
    ("DLPACK_INCLUDE", "COMPOSE_INCLUDE"),
    ("NVSTRINGS_INCLUDE", "NVSTRINGS_INCLUDE"),
    ("CUGRAPH_INCLUDE", "CUGRAPH_INCLUDE"),
    ("CUSPATIAL_INCLUDE", "CUSPATIAL_INCLUDE"),
)

# CMake 3.17 still uses these with Ninja but leaves them undefined.
CUDA_RULE_OVERRIDES = (
    (
        "CMAKE_CUDA_CREATE_ASSEMBLY_SOURCE",
        "<CMAKE_CUDA_COMPILER> <DEFINES> <FLAGS> -ptx <SOURCE> -o <ASSEMBLY_SOURCE>",
    ),
    (
        "CMAKE_CUDA_CREATE_PREPROCESSED_SOURCE",
        "<CMAKE_CUDA_COMPILER> <DEFINES> <FLAGS> -E <SOURCE> > <PREPROCESSED_SOURCE>",
    ),
)

CMakeArgs: TypeAlias = list[tuple[str, str]]


def cpp_build_type(config: BuildConfig) -> str:
    return config.build_type.lower()


def _on_off(value: bool) -> str:
    return "ON" if value else "OFF"


def current_branch(path: Path) -> str:
    branch = capture_cmd(["git", "branch", "--show-current"], cwd=path)
    return branch or DEFAULT_BRANCH_NAME


def cpp_build_dir(project: Project, config: BuildConfig, branch: Optional[str] = None) -> Path:
    """Branch and CUDA specific build directory, relative to the C++ root."""
    branch = branch if branch is not None else current_branch(project.cpp_home)
    cuda = config.get("CUDA_VERSION", DEFAULT_CUDA_VERSION)
    return (
        Path("build")
        / f"cuda-{cuda}"
        / branch.replace("/", "__")
        / cpp_build_type(config)
    )


def cpp_build_home(project: Project, config: BuildConfig) -> Path:
    """Stable ``build/<type>`` path that links to the active build directory."""
    return project.cpp_home / "build" / cpp_build_type(config)


def conda_env_prefix(config: BuildConfig) -> Path:
    return Path(config.get("CONDA_HOME", "/opt/conda")) / "envs" / "rapids"


def _project_arguments(project: Project, config: BuildConfig) -> CMakeArgs:
    conda_env = conda_env_prefix(config)
    if project.name == "cugraph":
        return [
            ("LIBCYPHERPARSER_INCLUDE", str(conda_env / "include")),
            ("LIBCYPHERPARSER_LIBRARY", str(conda_env / "lib" / "libcypher-parser.a")),
        ]
    if project.name == "cuml":
        tests = _on_off(config.tests)
        bench = _on_off(config.benchmarks)
        return [
            ("WITH_UCX", "ON"),
            ("BUILD_CUML_TESTS", tests),
            ("BUILD_PRIMS_TESTS", tests),
            ("BUILD_CUML_MG_TESTS", tests),
            ("BUILD_CUML_BENCH", bench),
            ("BUILD_CUML_PRIMS_BENCH", bench),
            ("BLAS_LIBRARIES", str(conda_env / "lib" / "libblas.so")),
        ]
    if project.name == "cuspatial":
        return [
            ("CONDA_LINK_DIRS", str(conda_env / "lib")),
            ("CONDA_INCLUDE_DIRS", str(conda_env / "include")),
        ]
    return []


def assemble_cmake_args(
    project: Project, config: BuildConfig, gcc: GccSelection
) -> CMakeArgs:
    """Ordered ``-D`` definitions for configuring ``project``."""
    args: CMakeArgs = [
        ("GPU_ARCHS", ""),
        ("CONDA_BUILD", "0"),
        ("CMAKE_CXX11_ABI", "ON"),
        ("ARROW_USE_CCACHE", "ON"),
        ("CMAKE_EXPORT_COMPILE_COMMANDS", "ON"),
        ("BUILD_TESTS", _on_off(config.tests)),
        ("BUILD_BENCHMARKS", _on_off(config.benchmarks)),
        ("CMAKE_ENABLE_BENCHMARKS", _on_off(config.benchmarks)),
        ("CMAKE_BUILD_TYPE", config.build_type),
        ("BUILD_LEGACY_TESTS", _on_off(config.legacy_tests)),
    ]
    args.extend((name, config.get(variable)) for name, variable in PATH_ARGUMENTS)
    args.extend(
        [
            ("CMAKE_C_COMPILER", gcc.cc),
            ("CMAKE_CXX_COMPILER", gcc.cxx),
            ("PARALLEL_LEVEL", str(config.parallel_level)),
            ("CMAKE_INSTALL_PREFIX", str(cpp_build_home(project, config))),
            ("CMAKE_SYSTEM_PREFIX_PATH", str(conda_env_prefix(config))),
        ]
    )
    if config.is_on("DISABLE_DEPRECATION_WARNINGS"):
        args.extend(
            [
                ("DISABLE_DEPRECATION_WARNING", "ON"),
                ("CMAKE_C_FLAGS", "-Wno-deprecated-declarations"),
                ("CMAKE_CXX_FLAGS", "-Wno-deprecated-declarations"),
                ("CMAKE_CUDA_FLAGS", "-Xcompiler=-Wno-deprecated-declarations"),
            ]
        )
    args.extend(_project_arguments(project, config))
    return args


def cmake_definitions(args: CMakeArgs) -> list[str]:
    return [f"-D{name}={value}" for name, value in args]


def _link_build_home(build_dir: Path, build_home: Path) -> None:
    if build_home == build_dir:
        return
    if build_home.is_symlink() or not build_home.exists():
        make_symlink(build_dir, build_home)


def configure_cpp(
    project: Project,
    config: BuildConfig,
    toolchain: Toolchain,
    extra_args: Sequence[str] = (),
) -> int:
    """Run CMake configure, then rewrite the compile database for clangd."""
    try:
        gcc = toolchain.select(config)
    except EOFError:
        error("no GCC version selected")
        return 1
    build_dir = project.cpp_home / cpp_build_dir(project, config)
    try:
        build_dir.mkdir(parents=True, exist_ok=True)
        _link_build_home(build_dir, cpp_build_home(project, config))
    except OSError as exc:
        error(f"failed to prepare {build_dir}: {exc}")
        return 1

    command = [
        "cmake",
        "-G",
        DEFAULT_CMAKE_GENERATOR,
        *cmake_definitions(assemble_cmake_args(project, config, gcc)),
        *cmake_definitions(list(CUDA_RULE_OVERRIDES)),
        *extra_args,
        str(project.cpp_home),
    ]
    env = config.subprocess_env(
        JOBS=str(config.parallel_level),
        CMAKE_GENERATOR=DEFAULT_CMAKE_GENERATOR,
        **toolchain.compiler_env(config),
    )
    result = run_cmd(command, cwd=build_dir, env=env)
    if result != 0:
        return result
    return fix_compile_commands(project.cpp_home, build_dir, config)


def build_cpp(project: Project, config: BuildConfig, targets: Sequence[str]) -> int:
    """Build ``targets`` in the active build directory."""
    build_home = cpp_build_home(project, config)
    info(f"building {' '.join(targets)} in {build_home}")
    command = [
        "cmake",
        "--build",
        str(build_home),
        "--parallel",
        str(config.parallel_level),
        "--target",
        *targets,
    ]
    return run_cmd(command, cwd=project.cpp_home, env=config.subprocess_env())
