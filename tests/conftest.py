import sys
from pathlib import Path

import pytest

# Add project root and tests dir to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from factories import FakeModel, SummarizeConfigFactory, word_count  # noqa: E402

from mapreducer.domain.config.summarize_config import SummarizeConfig  # noqa: E402


@pytest.fixture
def config() -> SummarizeConfig:
    """
    Returns a fast SummarizeConfig suitable for in-memory runs.
    """
    return SummarizeConfigFactory()


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def token_counter():
    """
    Word counter standing in for tiktoken (no encoding download needed).
    """
    return word_count


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
