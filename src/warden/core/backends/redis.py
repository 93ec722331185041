import time
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from warden.core.backends.base import StorageBackend, WindowState
from warden.core.errors import CounterStoreUnavailable


class RedisBackend(StorageBackend):
    """
    Redis counter store. The whole check-and-increment runs as one Lua
    script, so it is atomic across every process sharing the instance.
    """

    # LUA SCRIPT LOGIC:
    # 1. Read the current count (missing key = fresh window)
    # 2. If count >= limit: Deny, report time left in the window.
    # 3. Else: INCR, start the window TTL on the first hit, Allow.
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])

    local current = tonumber(redis.call('GET', key) or '0')

    if current >= limit then
        local ttl = redis.call('PTTL', key)
        if ttl < 0 then
            redis.call('PEXPIRE', key, window_ms)
            ttl = window_ms
        end
        return {current, 0, ttl}
    end

    current = redis.call('INCR', key)
    local ttl = redis.call('PTTL', key)
    if ttl < 0 then
        redis.call('PEXPIRE', key, window_ms)
        ttl = window_ms
    end

    return {current, 1, ttl}
    """

    def __init__(self, redis: Redis):
        self._redis = redis

    async def increment_and_check(self, key: str, limit: int, window_seconds: int) -> WindowState:
        now = time.time()
        # Returns: [count, is_allowed (1/0), ttl_ms]
        result = await self.eval_script(
            self._LUA_SCRIPT,
            keys=[key],
            args=[limit, window_seconds * 1000],
        )

        count, allowed, ttl_ms = (int(v) for v in result)
        return WindowState(
            count=count,
            allowed=bool(allowed),
            reset_at=now + ttl_ms / 1000,
            ttl=ttl_ms / 1000,
        )

    async def close(self) -> None:
        await self._redis.aclose()

    async def eval_script(self, script: str, keys: list[str], args: list[str | int | float]) -> Any:
        try:
            return await self._redis.eval(script, len(keys), *keys, *args)
        except (RedisError, OSError) as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
