import logging

from redis.exceptions import RedisError

from .otp import OTPError

logger = logging.getLogger("pediahelp.ratelimit")

RATE_LIMITED = "RATE_LIMITED"


class RateLimitedError(OTPError):
    def __init__(self, key: str, retry_after: int | None = None):
        super().__init__(RATE_LIMITED)
        self.key = key
        self.retry_after = retry_after


class RateLimitBackendError(OTPError):
    """The counter store could not be reached; callers decide whether to fail open."""


async def bump_rate_or_throw(redis, key: str, window_seconds: int, max_hits: int) -> int:
    """Count one hit against ``key`` inside a fixed window.

    INCR and EXPIRE go out as one MULTI so a counter can never be left
    without a TTL. The expiry is refreshed on every hit.
    """
    pipe = redis.pipeline(transaction=True)
    pipe.incr(key, 1)
    pipe.expire(key, window_seconds)
    try:
        count, _ = await pipe.execute()
    except RedisError as exc:
        raise RateLimitBackendError(str(exc)) from exc
    count = int(count)
    if count > max_hits:
        logger.info("Rate limit exceeded key=%s count=%s max=%s", key, count, max_hits)
        raise RateLimitedError(key, retry_after=window_seconds)
    return count
