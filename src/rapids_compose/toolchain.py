"""GCC version selection and the compiler links inside the dev container."""

import shutil
import sys
from typing import Callable, NamedTuple, Optional, TypeAlias

from rapids_compose.environment import BuildConfig
from rapids_compose.process import info, run_cmd


SUPPORTED_GCC_VERSIONS = ("5", "7", "8")
GCC_PROMPT = "Please select GCC version 5, 7, or 8: "
INVALID_GCC_MESSAGE = "Invalid GCC version, please select 5, 7, or 8"
LOCAL_BIN = "/usr/local/bin"
DEFAULT_SUDO_PASSWORD = "rapids"
# Password read from stdin, no prompt text.
SUDO = ("sudo", "-S", "-p", "")

Prompt: TypeAlias = Callable[[str], str]


class GccSelection(NamedTuple):
    version: str
    cc: str
    cxx: str
    nvcc: str


def prompt_from_terminal(message: str) -> str:
    """Read one answer from the operator; raises EOFError without a terminal."""
    return input(message)


def select_gcc_version(requested: Optional[str], prompt: Prompt) -> str:
    """Return ``requested`` when supported, otherwise ask until a valid answer."""
    version = (requested or "").strip()
    while version not in SUPPORTED_GCC_VERSIONS:
        version = prompt(GCC_PROMPT).strip()
        if version not in SUPPORTED_GCC_VERSIONS:
            print(INVALID_GCC_MESSAGE, file=sys.stderr)
    return version


def compiler_paths(version: str, config: BuildConfig) -> GccSelection:
    if config.get("USE_CCACHE") == "YES":
        nvcc = f"{LOCAL_BIN}/nvcc"
    else:
        nvcc = f"{config.get('CUDA_HOME', '/usr/local/cuda')}/bin/nvcc"
    return GccSelection(
        version=version,
        cc=f"{LOCAL_BIN}/gcc-{version}",
        cxx=f"{LOCAL_BIN}/g++-{version}",
        nvcc=nvcc,
    )


def compiler_link_commands(
    selection: GccSelection, config: BuildConfig
) -> list[list[str]]:
    """Commands pointing the compiler names at ccache or the system compilers."""
    version = selection.version
    commands = [
        [*SUDO, "update-alternatives", "--set", "gcc", f"/usr/bin/gcc-{version}"],
        [*SUDO, "update-alternatives", "--set", "g++", f"/usr/bin/g++-{version}"],
    ]
    if config.get("USE_CCACHE") == "YES":
        ccache = shutil.which("ccache") or "/usr/bin/ccache"
        for name in ("gcc", "nvcc", f"gcc-{version}", f"g++-{version}"):
            commands.append([*SUDO, "ln", "-s", "-f", ccache, f"{LOCAL_BIN}/{name}"])
    else:
        commands.append([*SUDO, "rm", "-f", f"{LOCAL_BIN}/nvcc"])
        for source, name in (
            ("/usr/bin/gcc", "gcc"),
            (f"/usr/bin/gcc-{version}", f"gcc-{version}"),
            (f"/usr/bin/g++-{version}", f"g++-{version}"),
        ):
            commands.append([*SUDO, "ln", "-s", "-f", source, f"{LOCAL_BIN}/{name}"])
    return commands


class Toolchain:
    """Remembers the GCC answer for the rest of an invocation."""

    def __init__(self, prompt: Prompt = prompt_from_terminal):
        self._prompt = prompt
        self._selection: Optional[GccSelection] = None

    @property
    def selection(self) -> Optional[GccSelection]:
        return self._selection

    def select(self, config: BuildConfig) -> GccSelection:
        if self._selection is not None:
            return self._selection
        version = select_gcc_version(config.get("GCC_VERSION"), self._prompt)
        info(f"Using gcc-{version} and g++-{version}")
        selection = compiler_paths(version, config)
        # Link updates need root inside the container; failures leave the
        # previous links in place.
        password = config.get("SUDO_PASSWORD", DEFAULT_SUDO_PASSWORD)
        for command in compiler_link_commands(selection, config):
            result = run_cmd(command, input=f"{password}\n", quiet=True)
            if result != 0:
                info(f"could not update {command[-1]} (exit code {result})")
        self._selection = selection
        return selection

    def compiler_env(self, config: BuildConfig) -> dict[str, str]:
        selection = self.select(config)
        return {
            "GCC_VERSION": selection.version,
            "CXX_VERSION": selection.version,
            "CC": selection.cc,
            "CXX": selection.cxx,
            "NVCC": selection.nvcc,
        }
