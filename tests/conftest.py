import os
import tempfile
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Keep test logs out of the working tree; must happen before utils.logger is imported
os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "routewise-test-logs"))

# Load environment variables from .env file for tests
load_dotenv()

from routing.model_catalog import ModelCatalog  # noqa: E402
from routing.router import ModelRouter  # noqa: E402


class FakeClock:
    """Manually advanced replacement for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return ModelCatalog.from_yaml()


@pytest.fixture
def router(catalog):
    return ModelRouter(catalog=catalog)
