"""Token orchestration: serve from cache, extract, or report backoff.

Single-token requests go cache → extraction cycle → cache/tracker update.
Batch requests reuse the cache and the extraction cycle but never touch the
retry tracker; each element succeeds or fails on its own.

Concurrent requests for the same source URL share one extraction through
``SingleFlight``. The cache stays last-writer-wins.
"""

import asyncio
import logging
import time
from typing import Any, Callable

from config import Settings, settings
from errors import BackoffActive, ExtractionFailure, ValidationError
from services import process_info
from services.cache import TokenCache
from services.extraction import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
    ExtractionResult,
    Extractor,
    run_extraction_cycle,
)
from services.retry_tracker import RetryTracker
from services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

MISSING_URL = "Missing url parameter"
DETAIL_URL_LENGTH = 50


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenService:
    def __init__(
        self,
        extractor: Extractor,
        cache: TokenCache | None = None,
        tracker: RetryTracker | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        enforce_backoff: bool = False,
        batch_max_concurrency: int = 4,
        sweep_interval_seconds: float = 60,
        clock: Callable[[], int] = _now_ms,
    ):
        self.extractor = extractor
        self.cache = cache if cache is not None else TokenCache()
        self.tracker = tracker if tracker is not None else RetryTracker()
        self.timeout_ms = timeout_ms
        self.max_attempts = max_attempts
        self.retry_delay_ms = retry_delay_ms
        self.enforce_backoff = enforce_backoff
        self.batch_max_concurrency = max(1, batch_max_concurrency)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._flights = SingleFlight()
        self._sweep_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Single token
    # ------------------------------------------------------------------

    async def get_token(
        self,
        source_url: Any,
        stream_key: str | None = None,
        force_refresh: bool = False,
    ) -> dict:
        if not source_url:
            raise ValidationError(MISSING_URL)
        if not isinstance(source_url, str):
            raise ValidationError("url must be a string")

        if not force_refresh:
            hit = self._cached(source_url)
            if hit is not None:
                return hit

        key = stream_key or source_url

        if self.enforce_backoff:
            state = self.tracker.get(key)
            if state is not None:
                remaining = self.tracker.remaining_backoff_ms(state, self._clock())
                if remaining > 0:
                    logger.info("Rejecting %s: backing off for %d ms", key[:50], remaining)
                    raise BackoffActive(key, state.failures, remaining)

        result = await self._extract(source_url)

        if result.success:
            self.tracker.clear(key)
            return {
                "success": True,
                "tokenUrl": result.token_url,
                "cached": False,
                "expiresIn": self.cache.ttl_ms,
            }

        state = self.tracker.record_failure(key, self._clock())
        retry_after = self.tracker.backoff_ms(state.failures)
        logger.warning(
            "Extraction failed for %s after %d attempts (failures=%d, retryAfter=%d)",
            key[:50],
            result.attempts,
            state.failures,
            retry_after,
        )
        raise ExtractionFailure(result.error or "Extraction failed", state.failures, retry_after)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def get_tokens_batch(self, streams: Any) -> dict:
        if not isinstance(streams, list):
            raise ValidationError("streams must be an array")

        semaphore = asyncio.Semaphore(self.batch_max_concurrency)

        async def process(item: Any) -> dict:
            item = item if isinstance(item, dict) else {}
            stream_id = item.get("id")
            source_url = item.get("url")

            if not source_url or not isinstance(source_url, str):
                return {"id": stream_id, "success": False, "error": MISSING_URL}

            hit = self._cached(source_url)
            if hit is not None:
                return {"id": stream_id, **hit}

            async with semaphore:
                result = await self._extract(source_url)

            if result.success:
                return {
                    "id": stream_id,
                    "success": True,
                    "tokenUrl": result.token_url,
                    "cached": False,
                    "expiresIn": self.cache.ttl_ms,
                }
            return {
                "id": stream_id,
                "success": False,
                "error": result.error,
                "retryCount": result.attempts,
            }

        results = await asyncio.gather(*[process(item) for item in streams])
        return {"results": list(results)}

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def clear_cache(self, stream_id: str | None = None) -> dict:
        if stream_id:
            cleared = self.cache.remove_matching(stream_id)
            logger.info("Cleared %d cache entries matching %s", cleared, stream_id)
            return {"cleared": cleared, "remaining": len(self.cache)}

        cleared = self.cache.clear() + self.tracker.clear_all()
        logger.info("Cleared cache and retry state (%d entries)", cleared)
        return {"cleared": cleared, "remaining": 0}

    def stats(self) -> dict:
        now = self._clock()
        return {
            "cachedTokens": len(self.cache),
            "failedStreams": len(self.tracker),
            "inFlight": len(self._flights),
            "uptime": process_info.uptime_seconds(),
            "memory": process_info.memory_usage(),
            "cacheDetails": [
                {
                    "url": entry.source_url[:DETAIL_URL_LENGTH] + "...",
                    "age": now - entry.created_at,
                    "expiresIn": self.cache.remaining_ttl(entry, now),
                }
                for entry in self.cache.entries()
            ],
        }

    def health(self) -> dict:
        return {
            "status": "ok",
            "uptime": process_info.uptime_seconds(),
            "cachedTokens": len(self.cache),
            "memory": process_info.memory_usage(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic stale-entry sweep. Requires a running event loop."""
        if self._sweep_task is None and self.sweep_interval_seconds > 0:
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.extractor.close()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.cache.sweep(self._clock())
            if removed:
                logger.info("Swept %d stale cache entries", removed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cached(self, source_url: str) -> dict | None:
        entry = self.cache.get(source_url)
        if entry is None:
            return None
        now = self._clock()
        if not self.cache.is_fresh(entry, now):
            return None
        self.cache.touch(source_url)
        logger.debug("Cache hit: %s", source_url[:50])
        return {
            "success": True,
            "tokenUrl": entry.token_url,
            "cached": True,
            "expiresIn": self.cache.remaining_ttl(entry, now),
        }

    async def _extract(self, source_url: str) -> ExtractionResult:
        async def cycle() -> ExtractionResult:
            result = await run_extraction_cycle(
                self.extractor,
                source_url,
                timeout_ms=self.timeout_ms,
                max_attempts=self.max_attempts,
                retry_delay_ms=self.retry_delay_ms,
            )
            if result.success:
                self.cache.put(source_url, result.token_url, self._clock())
            return result

        return await self._flights.do(source_url, cycle)


def build_extractor(config: Settings) -> Extractor:
    if config.extractor == "redirect":
        from services.redirect_extractor import RedirectExtractor

        return RedirectExtractor(max_hops=config.redirect_max_hops)

    from services.browser_extractor import BrowserExtractor

    return BrowserExtractor(headless=config.browser_headless)


def build_token_service(config: Settings) -> TokenService:
    return TokenService(
        extractor=build_extractor(config),
        cache=TokenCache(ttl_ms=config.token_ttl_ms, max_entries=config.cache_max_entries),
        tracker=RetryTracker(backoff_step_ms=config.backoff_step_ms, backoff_cap_ms=config.backoff_cap_ms),
        timeout_ms=config.extract_timeout_ms,
        max_attempts=config.extract_max_attempts,
        retry_delay_ms=config.extract_retry_delay_ms,
        enforce_backoff=config.enforce_backoff,
        batch_max_concurrency=config.batch_max_concurrency,
        sweep_interval_seconds=config.cache_sweep_interval_seconds,
    )


_service: TokenService | None = None


def get_token_service() -> TokenService:
    """Return the process-wide token service, creating it on first call."""
    global _service
    if _service is None:
        _service = build_token_service(settings)
    return _service
