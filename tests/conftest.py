"""
Shared pytest fixtures for notesum tests.

Provides mock summarizers so no test talks to a real LLM.
"""

import threading

import pytest

from notesum.channel import EventChannel
from notesum.note_store import NoteStore
from notesum.publisher import ChangeGatedPublisher
from notesum.service import NoteService
from notesum.worker import SummarizationWorker


class MockSummarizationProvider:
    """Deterministic summarizer that counts calls."""

    def __init__(self, prefix: str = "Summary: "):
        self.prefix = prefix
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def summarize(self, content: str, *, max_length: int = 500) -> str:
        with self._lock:
            self.calls.append(content)
        return f"{self.prefix}{content[:60]}"


class FailingSummarizationProvider:
    """Raises on every call, like an unreachable LLM endpoint."""

    def __init__(self, message: str = "LLM endpoint unreachable"):
        self.message = message
        self.calls = 0

    def summarize(self, content: str, *, max_length: int = 500) -> str:
        self.calls += 1
        raise ConnectionError(self.message)


class EmptySummarizationProvider:
    """Returns an empty string."""

    def summarize(self, content: str, *, max_length: int = 500) -> str:
        return "   "


class FlakySummarizationProvider:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.calls = 0

    def summarize(self, content: str, *, max_length: int = 500) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise TimeoutError("LLM call timed out")
        return f"Recovered: {content[:40]}"


class BrokenChannel:
    """Channel whose publish always fails."""

    max_deliveries = 5

    def publish(self, event) -> str:
        raise ConnectionError("queue unreachable")


class FakeClock:
    """Manually advanced time source for channel tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def summarizer():
    return MockSummarizationProvider()


@pytest.fixture
def failing_summarizer():
    return FailingSummarizationProvider()


@pytest.fixture
def empty_summarizer():
    return EmptySummarizationProvider()


@pytest.fixture
def flaky_summarizer():
    return FlakySummarizationProvider(failures=1)


@pytest.fixture
def broken_channel():
    return BrokenChannel()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def note_store(tmp_path):
    store = NoteStore(tmp_path / "notes.db")
    yield store
    store.close()


@pytest.fixture
def channel(tmp_path, clock):
    ch = EventChannel(tmp_path / "events.db", max_deliveries=3, visibility_timeout=60, clock=clock)
    yield ch
    ch.close()


@pytest.fixture
def publisher(channel):
    return ChangeGatedPublisher(channel)


@pytest.fixture
def service(note_store, publisher, summarizer):
    return NoteService(note_store, publisher, summarizer)


@pytest.fixture
def worker(note_store, channel, summarizer):
    return SummarizationWorker(note_store, channel, summarizer)
