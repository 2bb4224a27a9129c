"""Shared fixtures for the SimRec test suite."""

import itertools
from typing import Iterable, List

import pytest

from simrec.api.metrics import metrics_service
from simrec.recommender.config import RecommenderConfig


class SequenceRandom:
    """Deterministic random source returning preset values in order."""

    def __init__(self, values: Iterable[float], cycle: bool = False):
        self.values: List[float] = list(values)
        self._iter = itertools.cycle(self.values) if cycle else iter(self.values)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return next(self._iter)


class FixedClock:
    """Clock frozen at ``now`` milliseconds until moved."""

    def __init__(self, now: int = 1_700_000_000_000):
        self._now = now

    def now(self) -> int:
        return self._now

    def advance(self, ms: int) -> None:
        self._now += ms


class StaticClassifier:
    """Classifier returning a fixed label, or raising ``error`` if set."""

    def __init__(self, label: str = "n03063599", error: Exception = None):
        self.label = label
        self.error = error
        self.calls = 0

    async def classify(self, image_bytes: bytes) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.label


def fake_image_fetcher(url: str, timeout: float) -> bytes:
    return b"fake-image-bytes"


@pytest.fixture
def sequence_rng():
    """Factory for deterministic random sources."""
    return SequenceRandom


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def static_classifier():
    return StaticClassifier


@pytest.fixture
def image_fetcher():
    return fake_image_fetcher


@pytest.fixture
def db_url(tmp_path):
    """URL of a fresh SQLite database file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'simrec.db'}"


@pytest.fixture
def config(db_url, tmp_path):
    return RecommenderConfig(
        database_url=db_url,
        model_dir=str(tmp_path / "models"),
        purge_interval_s=0,
        cookie_secure=False,
    )


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics_service.reset()
    yield
    metrics_service.reset()
