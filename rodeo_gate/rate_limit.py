import time

from . import config


def _num(data: dict, field: str, default: float) -> float:
    raw = data.get(field.encode(), data.get(field))
    return default if raw is None else float(raw)


async def token_bucket(redis, key: str, capacity: int, refill_per_sec: float) -> bool:
    now = time.time()
    bucket_key = f"rl:{key}"

    # read-modify-write is not atomic across clients; good enough for a soft limit
    data = await redis.hgetall(bucket_key)
    tokens = _num(data, "tokens", capacity)
    last = _num(data, "last", now)

    tokens = min(capacity, tokens + (now - last) * refill_per_sec)
    allowed = tokens >= 1.0
    if allowed:
        tokens -= 1.0

    await redis.hset(bucket_key, mapping={"tokens": tokens, "last": now})
    await redis.expire(bucket_key, 3600)
    return allowed


async def allow_gate_request(redis, scope: str, client: str) -> bool:
    """Per-client budget for the gate endpoints (``RATE_LIMIT_PER_MINUTE``)."""
    per_minute = config.RATE_LIMIT_PER_MINUTE
    return await token_bucket(redis, key=f"{scope}:{client}", capacity=per_minute, refill_per_sec=per_minute / 60)
