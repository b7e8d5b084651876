import pytest

from crypto_observability_mcp import timeutils


class FakeClock:
    """Stand-in for the ``time`` module used by timeutils."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def time_ns(self) -> int:
        return self.now_ms * 1_000_000

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr(timeutils, "time", fake)
    return fake
