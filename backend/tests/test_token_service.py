import asyncio

import pytest

from conftest import FakeExtractor
from errors import BackoffActive, ExtractionFailure, ValidationError
from services.cache import TokenCache

A = "https://example.com/live/a.m3u8"
B = "https://example.com/live/b.m3u8"


# ---------------------------------------------------------------------------
# Single token
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_url_raises_validation_error(make_service, extractor) -> None:
    service = make_service(extractor)

    with pytest.raises(ValidationError):
        await service.get_token(None)
    with pytest.raises(ValidationError):
        await service.get_token("")
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_miss_extracts_and_caches(make_service, extractor) -> None:
    service = make_service(extractor)

    result = await service.get_token(A)

    assert result == {"success": True, "tokenUrl": f"{A}?token=fake", "cached": False, "expiresIn": 120_000}
    assert service.cache.get(A).token_url == f"{A}?token=fake"


@pytest.mark.asyncio
async def test_fresh_hit_skips_extractor_and_reports_remaining_ttl(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put(A, "https://cdn/a?token=cached", clock())
    clock.advance(20_000)

    result = await service.get_token(A)

    assert result == {"success": True, "tokenUrl": "https://cdn/a?token=cached", "cached": True, "expiresIn": 100_000}
    assert extractor.calls == []


@pytest.mark.asyncio
async def test_cache_hit_does_not_touch_retry_tracker(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.tracker.record_failure(A, clock())
    service.cache.put(A, "tok", clock())

    await service.get_token(A)

    assert service.tracker.get(A).failures == 1


@pytest.mark.asyncio
async def test_stale_entry_triggers_extraction(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put(A, "old", clock())
    clock.advance(120_000)

    result = await service.get_token(A)

    assert result["cached"] is False
    assert extractor.calls == [A]


@pytest.mark.asyncio
async def test_force_refresh_bypasses_fresh_entry(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put(A, "old", clock())

    result = await service.get_token(A, force_refresh=True)

    assert result["cached"] is False
    assert result["tokenUrl"] == f"{A}?token=fake"
    assert extractor.calls == [A]


@pytest.mark.asyncio
async def test_failure_records_and_reports_backoff(make_service) -> None:
    service = make_service(FakeExtractor({A: [None]}))

    for n in range(1, 9):
        with pytest.raises(ExtractionFailure) as exc_info:
            await service.get_token(A, stream_key="stream-7")
        assert exc_info.value.failures == n
        assert exc_info.value.retry_after == min(5000 * n, 30_000)
        assert exc_info.value.status_code == 503

    assert service.tracker.get("stream-7").failures == 8
    assert service.tracker.get(A) is None


@pytest.mark.asyncio
async def test_failure_key_defaults_to_source_url(make_service) -> None:
    service = make_service(FakeExtractor({A: [None]}))

    with pytest.raises(ExtractionFailure):
        await service.get_token(A)

    assert service.tracker.get(A).failures == 1


@pytest.mark.asyncio
async def test_success_clears_retry_state(make_service) -> None:
    service = make_service(FakeExtractor({A: [None, None, None, "https://cdn/a?token=ok"]}))

    with pytest.raises(ExtractionFailure):
        await service.get_token(A, stream_key="s")
    assert service.tracker.get("s").failures == 1

    result = await service.get_token(A, stream_key="s")

    assert result["success"] is True
    assert service.tracker.get("s") is None


@pytest.mark.asyncio
async def test_retries_within_cycle_leave_no_failure_record(make_service) -> None:
    extractor = FakeExtractor({A: [None, RuntimeError("net::ERR_ABORTED"), "https://cdn/a?token=3"]})
    service = make_service(extractor)

    result = await service.get_token(A)

    assert result["success"] is True
    assert result["tokenUrl"] == "https://cdn/a?token=3"
    assert len(extractor.calls) == 3
    assert len(service.tracker) == 0


@pytest.mark.asyncio
async def test_concurrent_identical_requests_share_one_extraction(make_service) -> None:
    extractor = FakeExtractor(delay=0.01)
    service = make_service(extractor)

    results = await asyncio.gather(*[service.get_token(A) for _ in range(5)])

    assert len(extractor.calls) == 1
    assert {r["tokenUrl"] for r in results} == {f"{A}?token=fake"}


@pytest.mark.asyncio
async def test_backoff_not_enforced_by_default(make_service) -> None:
    extractor = FakeExtractor({A: [None]})
    service = make_service(extractor)

    for _ in range(2):
        with pytest.raises(ExtractionFailure) as exc_info:
            await service.get_token(A)
        assert not isinstance(exc_info.value, BackoffActive)

    assert len(extractor.calls) == 6


@pytest.mark.asyncio
async def test_enforced_backoff_rejects_inside_window(make_service, clock) -> None:
    extractor = FakeExtractor({A: [None, None, None, "https://cdn/a?token=ok"]})
    service = make_service(extractor, enforce_backoff=True)

    with pytest.raises(ExtractionFailure):
        await service.get_token(A)
    calls_after_failure = len(extractor.calls)

    clock.advance(2000)
    with pytest.raises(BackoffActive) as exc_info:
        await service.get_token(A)
    assert exc_info.value.retry_after == 3000
    assert exc_info.value.failures == 1
    assert len(extractor.calls) == calls_after_failure

    clock.advance(3000)
    result = await service.get_token(A)
    assert result["success"] is True


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_batch_rejects_non_list(make_service, extractor) -> None:
    service = make_service(extractor)

    for bad in (None, {"url": A}, "streams"):
        with pytest.raises(ValidationError):
            await service.get_tokens_batch(bad)


@pytest.mark.asyncio
async def test_batch_preserves_order_and_marks_cached(make_service, clock) -> None:
    # B is slow so A (cached) completes first internally
    extractor = FakeExtractor(delay=0.01)
    service = make_service(extractor)
    service.cache.put(A, "https://cdn/a?token=cached", clock())

    result = await service.get_tokens_batch([{"url": A, "id": 1}, {"url": B, "id": 2}])

    first, second = result["results"]
    assert first["id"] == 1
    assert first["cached"] is True
    assert first["tokenUrl"] == "https://cdn/a?token=cached"
    assert second["id"] == 2
    assert second["cached"] is False
    assert second["tokenUrl"] == f"{B}?token=fake"
    assert extractor.calls == [B]
    assert service.cache.get(B) is not None


@pytest.mark.asyncio
async def test_batch_partial_failure_does_not_touch_tracker(make_service) -> None:
    service = make_service(FakeExtractor({A: [None]}))

    result = await service.get_tokens_batch([{"url": A, "id": "a"}, {"url": B, "id": "b"}, {"id": "c"}])

    failed, ok, missing = result["results"]
    assert failed == {"id": "a", "success": False, "error": "Failed to capture tokenized URL", "retryCount": 3}
    assert ok["success"] is True
    assert missing == {"id": "c", "success": False, "error": "Missing url parameter"}
    assert len(service.tracker) == 0


@pytest.mark.asyncio
async def test_batch_empty_list(make_service, extractor) -> None:
    service = make_service(extractor)

    assert await service.get_tokens_batch([]) == {"results": []}


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


def test_clear_cache_by_fragment_leaves_others(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put("https://x/abc/1", "t", clock())
    service.cache.put("https://x/zabcz/2", "t", clock())
    service.cache.put("https://x/def/3", "t", clock())
    service.tracker.record_failure("abc", clock())

    assert service.clear_cache("abc") == {"cleared": 2, "remaining": 1}
    assert service.cache.get("https://x/def/3") is not None
    assert service.tracker.get("abc") is not None


def test_clear_cache_all_empties_both_stores(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put(A, "t", clock())
    service.cache.put(B, "t", clock())
    service.tracker.record_failure("s", clock())

    assert service.clear_cache() == {"cleared": 3, "remaining": 0}
    assert len(service.cache) == 0
    assert len(service.tracker) == 0


def test_stats_reports_entries_without_mutating(make_service, extractor, clock) -> None:
    service = make_service(extractor, cache=TokenCache(ttl_ms=120_000))
    long_url = "https://example.com/" + "x" * 100
    service.cache.put(long_url, "t", clock())
    service.cache.put(A, "t", clock() - 200_000)
    service.tracker.record_failure("s", clock())
    clock.advance(30_000)

    stats = service.stats()

    assert stats["cachedTokens"] == 2
    assert stats["failedStreams"] == 1
    assert "uptime" in stats
    assert "memory" in stats
    details = {d["url"]: d for d in stats["cacheDetails"]}
    fresh = details[long_url[:50] + "..."]
    assert fresh["age"] == 30_000
    assert fresh["expiresIn"] == 90_000
    stale = details[A[:50] + "..."]
    assert stale["expiresIn"] == 0
    # Stale entry still resident after stats
    assert len(service.cache) == 2
    assert len(service.tracker) == 1


def test_health_snapshot(make_service, extractor, clock) -> None:
    service = make_service(extractor)
    service.cache.put(A, "t", clock())

    health = service.health()

    assert health["status"] == "ok"
    assert health["cachedTokens"] == 1
    assert health["uptime"] >= 0


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sweep_task_removes_stale_entries_and_stop_closes_extractor(make_service, extractor, clock) -> None:
    service = make_service(extractor, cache=TokenCache(ttl_ms=1000), sweep_interval_seconds=0.01)
    service.cache.put(A, "t", clock())
    clock.advance(1000)

    service.start()
    for _ in range(50):
        if len(service.cache) == 0:
            break
        await asyncio.sleep(0.01)
    await service.stop()

    assert len(service.cache) == 0
    assert extractor.closed is True
