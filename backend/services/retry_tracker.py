"""Cross-request failure history per stream, used to compute backoff hints.

The tracker never blocks a request by itself. It reports a suggested
``retryAfter`` to the caller; the token service may optionally enforce it.
"""

from dataclasses import dataclass

DEFAULT_BACKOFF_STEP_MS = 5000
DEFAULT_BACKOFF_CAP_MS = 30_000


@dataclass
class RetryState:
    stream_key: str
    failures: int
    last_failure_at: int  # ms


class RetryTracker:
    def __init__(
        self,
        backoff_step_ms: int = DEFAULT_BACKOFF_STEP_MS,
        backoff_cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
    ):
        self.backoff_step_ms = backoff_step_ms
        self.backoff_cap_ms = backoff_cap_ms
        self._states: dict[str, RetryState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def get(self, stream_key: str) -> RetryState | None:
        return self._states.get(stream_key)

    def record_failure(self, stream_key: str, now: int) -> RetryState:
        state = self._states.get(stream_key)
        if state is None:
            state = RetryState(stream_key=stream_key, failures=1, last_failure_at=now)
            self._states[stream_key] = state
        else:
            state.failures += 1
            state.last_failure_at = now
        return state

    def clear(self, stream_key: str) -> bool:
        return self._states.pop(stream_key, None) is not None

    def clear_all(self) -> int:
        size = len(self._states)
        self._states.clear()
        return size

    def backoff_ms(self, failures: int) -> int:
        """Capped linear backoff: ``min(step * failures, cap)``."""
        return min(self.backoff_step_ms * failures, self.backoff_cap_ms)

    def remaining_backoff_ms(self, state: RetryState, now: int) -> int:
        """Time left in the backoff window that started at the last failure."""
        return max(0, self.backoff_ms(state.failures) - (now - state.last_failure_at))
