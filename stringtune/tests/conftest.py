import sys
import warnings
from pathlib import Path

import pytest

# Ensure repository root is importable for `stringtune` package resolution.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stringtune.pipeline.tunings import TuningRegistry  # noqa: E402


def pytest_configure(config):
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)
    warnings.filterwarnings("ignore", message=".*PySoundFile failed.*")
    warnings.filterwarnings("ignore", message=".*YIN buffer of .* too short.*")


@pytest.fixture
def registry():
    return TuningRegistry.with_defaults()
