"""Make the CMake compile database usable by clangd.

clangd does not understand every nvcc option, so each compile command goes
through an ordered list of rewrite rules. The result is written next to the
original database and linked into the project's C++ root, where clangd looks
for ``compile_commands.json``.
"""

import json
import os
import re
import shlex
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Tuple, TypeAlias

from rapids_compose.environment import BuildConfig
from rapids_compose.process import error, info


COMPILE_COMMANDS_NAME = "compile_commands.json"
CLANGD_COMMANDS_NAME = "compile_commands.clangd.json"
DEFAULT_CUDA_HOME = "/usr/local/cuda"

ALLOWED_WARNINGS = (
    "-Wno-unknown-pragmas",
    "-Wno-c++17-extensions",
    "-Wno-unevaluated-expression",
)

RewriteRule: TypeAlias = Tuple[str, Callable[[str], str]]
CompileCommandEntry: TypeAlias = dict[str, Any]


def _sub(pattern: str, replacement: str) -> Callable[[str], str]:
    compiled = re.compile(pattern)

    def apply(command: str) -> str:
        return compiled.sub(lambda _: replacement, command)

    return apply


def cuda_version_parts(version: str) -> Tuple[str, str]:
    """Split ``CUDA_SHORT_VERSION`` (``10.2``) into major and minor."""
    parts = version.strip().split(".")
    major = parts[0] if parts and parts[0] else "0"
    minor = parts[1] if len(parts) > 1 and parts[1] else "0"
    return major, minor


def clang_cuda_options(cuda_version: str) -> str:
    major, minor = cuda_version_parts(cuda_version)
    return " ".join(
        [
            "-x cuda",
            "-nocudalib",
            "-nodefaultlibs",
            "--no-cuda-version-check",
            f"-D__CUDACC_VER_MAJOR__={major}",
            f"-D__CUDACC_VER_MINOR__={minor}",
        ]
    )


def strip_chained_invocation(command: str) -> str:
    """Drop the dependency-scanning nvcc call chained after ``&&``."""
    return re.sub(r" &&.*$", "", command)


# Greedy: several -gencode flags collapse into one --cuda-gpu-arch for the
# last listed architecture.
gencode_to_gpu_arch = _sub(r"-gencode=arch=compute_.*,code=sm_", "--cuda-gpu-arch=sm_")
drop_gencode = _sub(r"-gencode=arch=[^-]* ", "")
drop_extended_lambda = _sub(r" --expt-extended-lambda", " ")
drop_relaxed_constexpr = _sub(r" --expt-relaxed-constexpr", " ")
split_werror = _sub(r"-Wall,-Werror", "-Wall -Werror")
append_allowed_warnings = _sub(r"-Werror", "-Werror " + " ".join(ALLOWED_WARNINGS))
split_deprecated_declarations = _sub(
    r",-Wno-error=deprecated-declarations", " -Wno-deprecated-declarations"
)
drop_cross_execution_space_call = _sub(
    r"-Wno-unevaluated-expression=cross-execution-space-call", ""
)
drop_forward_unknown = _sub(r" -forward-unknown-to-host-compiler", "")
split_xcompiler = _sub(r"-Xcompiler=", "-Xcompiler ")
xcompiler_to_xarch_host = _sub(r"-Xcompiler", "-Xarch_host")
canonical_gcc = _sub(r"/usr/local/bin/gcc", "/usr/bin/gcc")
canonical_gxx = _sub(r"/usr/local/bin/g\+\+", "/usr/bin/g++")


def default_rules(
    cuda_home: str = DEFAULT_CUDA_HOME, cuda_version: str = ""
) -> list[RewriteRule]:
    """The rewrite rules in the order they must run.

    The chained invocation is stripped first so later rules never see it, and
    ``-Werror`` gains its suppressions before the cross-execution-space
    suppression that it produces is removed again.
    """
    return [
        ("strip-chained-invocation", strip_chained_invocation),
        ("gencode-to-gpu-arch", gencode_to_gpu_arch),
        ("drop-gencode", drop_gencode),
        ("drop-extended-lambda", drop_extended_lambda),
        ("drop-relaxed-constexpr", drop_relaxed_constexpr),
        ("split-werror", split_werror),
        ("compile-as-cuda", _sub(r" -x cu ", f" {clang_cuda_options(cuda_version)} ")),
        ("cuda-include", _sub(r"nvcc ", f"nvcc -I{cuda_home}/include ")),
        ("append-allowed-warnings", append_allowed_warnings),
        ("split-deprecated-declarations", split_deprecated_declarations),
        ("drop-cross-execution-space-call", drop_cross_execution_space_call),
        ("drop-forward-unknown", drop_forward_unknown),
        ("split-xcompiler", split_xcompiler),
        ("xcompiler-to-xarch-host", xcompiler_to_xarch_host),
        ("canonical-gcc", canonical_gcc),
        ("canonical-gxx", canonical_gxx),
        ("canonical-nvcc", _sub(r"/usr/local/bin/nvcc", f"{cuda_home}/bin/nvcc")),
    ]


def rules_for(config: BuildConfig) -> list[RewriteRule]:
    return default_rules(
        config.get("CUDA_HOME", DEFAULT_CUDA_HOME), config.get("CUDA_SHORT_VERSION")
    )


def rewrite_command(command: str, rules: Sequence[RewriteRule]) -> str:
    for _, rule in rules:
        command = rule(command)
    return command


def rewrite_entry(
    entry: CompileCommandEntry, rules: Sequence[RewriteRule]
) -> CompileCommandEntry:
    rewritten = dict(entry)
    if isinstance(entry.get("command"), str):
        rewritten["command"] = rewrite_command(entry["command"], rules)
    elif isinstance(entry.get("arguments"), list):
        command = shlex.join(str(arg) for arg in entry["arguments"])
        rewritten["arguments"] = shlex.split(rewrite_command(command, rules))
    return rewritten


def _read_database(path: Path) -> Optional[list[CompileCommandEntry]]:
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as exc:
        error(f"failed to read compile database {path}: {exc}")
        return None
    try:
        data = json.loads(contents)
    except json.JSONDecodeError as exc:
        error(f"invalid JSON in {path}: {exc}")
        return None
    if not isinstance(data, list) or not all(isinstance(e, dict) for e in data):
        error(f"compile database {path} must contain a list of objects")
        return None
    return data


def rewrite(
    input_path: Path,
    output_path: Optional[Path] = None,
    rules: Optional[Sequence[RewriteRule]] = None,
) -> Optional[Path]:
    """Write a rewritten copy of ``input_path`` and return its location.

    A missing or malformed database yields None; the input is never modified.
    """
    output_path = output_path or input_path.with_name(CLANGD_COMMANDS_NAME)
    rules = default_rules() if rules is None else rules
    entries = _read_database(input_path)
    if entries is None:
        return None
    rewritten = [rewrite_entry(entry, rules) for entry in entries]
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(rewritten, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        error(f"failed to write {output_path}: {exc}")
        return None
    return output_path


def make_symlink(source: Path, link: Path) -> bool:
    """Point ``link`` at ``source``; returns False when it already does."""
    try:
        current = os.readlink(link)
    except OSError:
        current = None
    if current == str(source):
        return False
    if link.is_symlink() or link.exists():
        link.unlink()
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(source)
    return True


def publish(output_path: Path, link_path: Path) -> bool:
    return make_symlink(output_path, link_path)


def fix_compile_commands(cpp_home: Path, build_dir: Path, config: BuildConfig) -> int:
    """Rewrite the database in ``build_dir`` and link it into ``cpp_home``.

    Always returns 0: a database that cannot be rewritten only means clangd
    has nothing to read for this project.
    """
    output = rewrite(
        build_dir / COMPILE_COMMANDS_NAME,
        build_dir / CLANGD_COMMANDS_NAME,
        rules_for(config),
    )
    if output is None:
        info(f"no compile commands for {cpp_home}")
        return 0
    link = cpp_home / COMPILE_COMMANDS_NAME
    try:
        if publish(output, link):
            info(f"linked {link} -> {output}")
    except OSError as exc:
        error(f"failed to link {link}: {exc}")
    return 0
