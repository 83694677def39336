"""Shared fixtures: import path, fake clock, in-memory audit."""

import itertools
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from ops_guard import AuditLog, InMemoryAuditSink  # noqa: E402


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

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
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit(sink, clock):
    return AuditLog(sink, clock=clock)


@pytest.fixture
def ids():
    counter = itertools.count(1)
    return lambda: f"apr-{next(counter)}"
