import pytest

from summary_cadence import config as config_module
from summary_cadence import pipeline as pipeline_module


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(autouse=True)
def _memory_backend(monkeypatch):
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.delenv("SUMMARY_GENERATOR_URL", raising=False)
    monkeypatch.delenv("SUMMARY_GENERATE_INLINE", raising=False)
    config_module.get_settings.cache_clear()
    pipeline_module.reset_pipeline()
    yield
    pipeline_module.reset_pipeline()
    config_module.get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()
