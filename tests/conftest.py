import sys
from pathlib import Path

import pytest  # type: ignore[import-not-found]

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from rapids_compose.environment import PROJECT_VARIABLES  # noqa: E402

RESOLVED_VARIABLES = (
    *PROJECT_VARIABLES.values(),
    "CMAKE_BUILD_TYPE",
    "BUILD_TESTS",
    "BUILD_BENCHMARKS",
    "BUILD_LEGACY_TESTS",
    "PARALLEL_LEVEL",
    "GCC_VERSION",
    "COMPOSE_ENV_FILE",
    "COMPOSE_HOME",
    "RAPIDS_HOME",
    "USE_CCACHE",
    "DISABLE_DEPRECATION_WARNINGS",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    for name in RESOLVED_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    yield


class ScriptedPrompt:
    """Answers GCC prompts from a fixed list and records each question."""

    def __init__(self, *answers: str):
        self.answers = list(answers)
        self.questions: list[str] = []

    def __call__(self, message: str) -> str:
        self.questions.append(message)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


@pytest.fixture
def scripted_prompt():
    return ScriptedPrompt


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--type",
        action="store",
        default="all",
        choices=("unit", "integration", "all"),
        help="Select which tests to run: unit, integration, or all.",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    selected = config.getoption("--type")
    if selected == "all":
        return

    skip_integration = pytest.mark.skip(reason="skipped by --type unit")
    skip_unit = pytest.mark.skip(reason="skipped by --type integration")

    for item in items:
        is_integration = item.get_closest_marker("integration") is not None
        if selected == "unit" and is_integration:
            item.add_marker(skip_integration)
        elif selected == "integration" and not is_integration:
            item.add_marker(skip_unit)
