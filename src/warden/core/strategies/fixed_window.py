from dataclasses import dataclass

from warden.core.backends.base import StorageBackend


@dataclass(frozen=True)
class WindowCheck:
    """
    Outcome of counting one request in a fixed window.

    `retry_after` is the time left in the window as seen by the store, and
    is only set when the request was denied.
    """

    allowed: bool
    limit: int
    count: int
    remaining: int
    reset_at: float
    retry_after: float | None = None


class FixedWindowStrategy:
    """
    Fixed window counter.
    Each key counts requests from its first hit until the window elapses.
    Cheaper than a sliding log, at the cost of allowing a burst of up to
    2x the limit across a window boundary.
    """

    KEY_PREFIX = "warden:fw:"

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    async def check(self, key: str, limit: int, window_seconds: int) -> WindowCheck:
        state = await self.backend.increment_and_check(
            self.KEY_PREFIX + key,
            limit,
            window_seconds,
        )

        return WindowCheck(
            allowed=state.allowed,
            limit=limit,
            count=state.count,
            remaining=max(0, limit - state.count),
            reset_at=state.reset_at,
            retry_after=None if state.allowed else max(0.0, state.ttl),
        )
