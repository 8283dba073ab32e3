from dataclasses import dataclass
import threading
import time

from loguru import logger
import redis

from refledger.services.redis_client import get_redis_client

MEMORY_KEY_CAP = 10_000


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int
    reset_after_seconds: int


def _decide(count: int, limit: int, reset_seconds: int) -> RateLimitDecision:
    reset_seconds = max(1, reset_seconds)
    allowed = count <= limit
    return RateLimitDecision(
        allowed=allowed,
        limit=limit,
        remaining=max(0, limit - count),
        retry_after_seconds=0 if allowed else reset_seconds,
        reset_after_seconds=reset_seconds,
    )


class RateLimitService:
    """Fixed-window request counter.

    Counters live in redis so every API worker shares them. A request that
    hits a redis error is counted in per-process memory instead; the next
    request tries redis again.
    """

    def __init__(self, redis_client: redis.Redis | None = None, *, use_redis: bool = True) -> None:
        if redis_client is None and use_redis:
            redis_client = get_redis_client()
        self._redis = redis_client
        self._memory_counters: dict[str, tuple[int, int]] = {}
        self._lock = threading.Lock()

    def check(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        limit = max(1, int(limit))
        window_seconds = max(1, int(window_seconds))
        bucket = int(time.time() // window_seconds)
        if self._redis is not None:
            decision = self._count_in_redis(key, bucket, limit, window_seconds)
            if decision is not None:
                return decision
        return self._count_in_memory(key, bucket, limit, window_seconds)

    def _count_in_redis(
        self,
        key: str,
        bucket: int,
        limit: int,
        window_seconds: int,
    ) -> RateLimitDecision | None:
        redis_key = f"refledger:ratelimit:{key}:{bucket}"
        try:
            pipe = self._redis.pipeline()
            # The first hit of a window creates the counter with its expiry.
            pipe.set(redis_key, 0, ex=window_seconds + 1, nx=True)
            pipe.incr(redis_key)
            pipe.ttl(redis_key)
            _, count, ttl = pipe.execute()
        except redis.RedisError as exc:
            logger.warning("Rate limiter using memory for this request: {}", exc)
            return None
        return _decide(int(count), limit, int(ttl) if ttl and ttl > 0 else window_seconds)

    def _count_in_memory(
        self,
        key: str,
        bucket: int,
        limit: int,
        window_seconds: int,
    ) -> RateLimitDecision:
        with self._lock:
            seen_bucket, count = self._memory_counters.get(key, (bucket, 0))
            count = count + 1 if seen_bucket == bucket else 1
            self._memory_counters[key] = (bucket, count)
            if len(self._memory_counters) > MEMORY_KEY_CAP:
                self._memory_counters = {
                    entry_key: entry
                    for entry_key, entry in self._memory_counters.items()
                    if entry[0] == bucket
                }
        reset_seconds = int((bucket + 1) * window_seconds - time.time())
        return _decide(count, limit, reset_seconds)


rate_limit_service = RateLimitService()
