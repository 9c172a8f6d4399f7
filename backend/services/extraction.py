"""Extractor contract and the bounded local retry loop around it.

The loop here is internal to one logical request: up to ``max_attempts``
calls with linear delays between them (1s, 2s by default). It is separate
from the cross-request failure history kept by ``RetryTracker``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15_000
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1000


@dataclass
class ExtractionResult:
    success: bool
    token_url: str | None = None
    error: str | None = None
    attempts: int = 1

    @classmethod
    def ok(cls, token_url: str) -> "ExtractionResult":
        return cls(success=True, token_url=token_url)

    @classmethod
    def failed(cls, error: str) -> "ExtractionResult":
        return cls(success=False, error=error)


class Extractor(Protocol):
    """Single-attempt token extraction. Retries are the caller's job."""

    async def extract(self, url: str, timeout_ms: int) -> ExtractionResult: ...

    async def close(self) -> None: ...


async def run_extraction_cycle(
    extractor: Extractor,
    url: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
) -> ExtractionResult:
    """Call the extractor until it succeeds or attempts run out.

    Returns the successful result immediately, otherwise a failure carrying
    the last error message and the total number of attempts made.
    """
    attempt = 0
    while True:
        try:
            result = await extractor.extract(url, timeout_ms)
        except Exception as e:
            result = ExtractionResult.failed(str(e) or e.__class__.__name__)

        if result.success:
            result.attempts = attempt + 1
            return result

        logger.error("Token extraction error (attempt %d): %s", attempt + 1, result.error)

        if attempt < max_attempts - 1:
            await asyncio.sleep(retry_delay_ms * (attempt + 1) / 1000)
            attempt += 1
            continue

        return ExtractionResult(success=False, error=result.error, attempts=attempt + 1)
