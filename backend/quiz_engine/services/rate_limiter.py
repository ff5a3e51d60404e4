"""Redis-backed leaky-bucket limiter for answer autosaves.

Students' clients autosave on every keystroke pause; the bucket refills at
``RATE_LIMIT_ANSWERS_RPM / 60`` tokens per second up to
``RATE_LIMIT_ANSWERS_BURST``. Redis being down never blocks a student.
"""

import logging
import time
import uuid

import redis
from fastapi import HTTPException, status

from quiz_engine.config import settings

logger = logging.getLogger(__name__)

_pool: redis.ConnectionPool | None = None

# KEYS[1] = bucket key, ARGV = burst, refill rate (tokens/s), now (s).
# Returns 1 when allowed, 0 when the bucket is empty.
_LUA_SCRIPT = """
local key         = KEYS[1]
local max_tokens  = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now         = tonumber(ARGV[3])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens      = tonumber(bucket[1]) or max_tokens
local last_refill = tonumber(bucket[2]) or now

tokens = math.min(max_tokens, tokens + math.max(0, now - last_refill) * refill_rate)

local allowed = 0
if tokens >= 1 then
    tokens = tokens - 1
    allowed = 1
end

redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
redis.call('EXPIRE', key, 120)
return allowed
"""


def _get_redis() -> redis.Redis:
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=10,
        )
    return redis.Redis(connection_pool=_pool)


def allow(bucket_key: str) -> bool:
    """True when the caller still has a token in *bucket_key*."""
    rpm = settings.RATE_LIMIT_ANSWERS_RPM
    if rpm <= 0:
        return True  # disabled

    try:
        allowed = _get_redis().eval(
            _LUA_SCRIPT, 1, bucket_key, settings.RATE_LIMIT_ANSWERS_BURST, rpm / 60.0, time.time()
        )
        return bool(allowed)
    except redis.RedisError as e:
        logger.warning("Rate-limiter Redis error (allowing request): %s", e)
        return True


def enforce_answer_rate_limit(user_id: uuid.UUID) -> None:
    """Raise 429 once a student autosaves faster than allowed."""
    key = f"rl:answers:u:{user_id}"
    if not allow(key):
        logger.info("Rate-limited: %s", key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many answer updates — please slow down.",
        )
