"""
Shared fixtures for token service tests.

Extraction is replaced by ``FakeExtractor`` and time by ``FakeClock`` so
tests never launch a browser or sleep through real backoff delays.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add backend directory to the Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from services.cache import TokenCache  # noqa: E402
from services.extraction import ExtractionResult  # noqa: E402
from services.retry_tracker import RetryTracker  # noqa: E402
from services.token_service import TokenService  # noqa: E402


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeExtractor:
    """
    Scripted extractor.

    ``script`` maps a URL to a list of outcomes consumed one per call:
    a string is a token URL, ``None`` is a plain failure, an exception is
    raised. The last outcome repeats once the list is exhausted. URLs not in
    the script get ``<url>?token=fake``.
    """

    def __init__(self, script: dict | None = None, delay: float = 0):
        self.script = {url: list(outcomes) for url, outcomes in (script or {}).items()}
        self.delay = delay
        self.calls: list[str] = []
        self.closed = False

    async def extract(self, url: str, timeout_ms: int) -> ExtractionResult:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)

        outcomes = self.script.get(url)
        if outcomes is None:
            return ExtractionResult.ok(f"{url}?token=fake")
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return ExtractionResult.failed("Failed to capture tokenized URL")
        return ExtractionResult.ok(outcome)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def make_service(clock):
    """Build a TokenService with no retry delays and the fake clock."""

    def _make(extractor, **kwargs) -> TokenService:
        kwargs.setdefault("retry_delay_ms", 0)
        kwargs.setdefault("sweep_interval_seconds", 0)
        return TokenService(
            extractor=extractor,
            cache=kwargs.pop("cache", TokenCache()),
            tracker=kwargs.pop("tracker", RetryTracker()),
            clock=clock,
            **kwargs,
        )

    return _make
