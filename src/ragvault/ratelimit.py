"""Distributed sliding-window admission control backed by a Redis sorted set.

Per client key, one pipelined unit runs on every call:

  ZREMRANGEBYSCORE key -inf (now - window)   evict expired timestamps
  ZADD key {unique member: now}              record this request
  ZCARD key                                  count the window
  ZRANGE key 0 0 WITHSCORES                  oldest timestamp (retry hint)
  EXPIRE key window                          best-effort cleanup

The request is allowed while the count is within ``max_requests``. A denied
request is removed again (ZREM) so it does not use up window budget: the
client is admitted as soon as the oldest stored timestamp expires. If Redis
is unreachable the limiter fails open: the request is allowed and the
failure is only logged.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import redis
import structlog

from ragvault.errors import RateLimitExceeded, ValidationError

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        count: Requests in the window including this one (0 when failing open).
        limit: Configured maximum per window.
        retry_after: Seconds until the window next admits a request (0 if allowed).
        reset_at: Epoch seconds at which the oldest entry expires.
        degraded: True when the store was unreachable and the limiter failed open.
    """

    allowed: bool
    count: int
    limit: int
    retry_after: float = 0.0
    reset_at: float = 0.0
    degraded: bool = False

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimiter:
    """Sliding-window limiter shared by every pipeline entry point.

    Args:
        client: A ``redis.Redis`` (or compatible) client.
        window_seconds: Trailing window length.
        max_requests: Requests allowed per client key inside one window.
        key_prefix: Prepended to every client key.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        client: Any,
        window_seconds: int = 100,
        max_requests: int = 100,
        key_prefix: str = "ratelimit:",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds < 1:
            raise ValidationError(f"window_seconds must be >= 1, got {window_seconds}")
        if max_requests < 1:
            raise ValidationError(f"max_requests must be >= 1, got {max_requests}")
        self._client = client
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.key_prefix = key_prefix
        self._clock = clock

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: Any) -> "RateLimiter":
        """Build a limiter on ``redis.Redis.from_url`` with short socket timeouts."""
        client = redis.Redis.from_url(
            redis_url, socket_connect_timeout=5, socket_timeout=5
        )
        return cls(client, **kwargs)

    def allow(self, client_key: str) -> bool:
        return self.check(client_key).allowed

    def enforce(self, client_key: str) -> RateLimitDecision:
        """Like :meth:`check`, but raise RateLimitExceeded when denied."""
        decision = self.check(client_key)
        if not decision.allowed:
            raise RateLimitExceeded(client_key, decision.retry_after)
        return decision

    def check(self, client_key: str) -> RateLimitDecision:
        if not client_key:
            raise ValidationError("client_key must not be empty")
        key = f"{self.key_prefix}{client_key}"
        now = self._clock()
        window_start = now - self.window_seconds
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.zremrangebyscore(key, "-inf", window_start)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, self.window_seconds)
            _, _, count, oldest, _ = pipe.execute()
        except redis.RedisError as exc:
            log.warning(
                "rate_limit_store_unavailable",
                client=client_key,
                error=str(exc),
            )
            return RateLimitDecision(
                allowed=True, count=0, limit=self.max_requests, degraded=True
            )

        oldest_score = float(oldest[0][1]) if oldest else now
        reset_at = oldest_score + self.window_seconds
        if count <= self.max_requests:
            return RateLimitDecision(
                allowed=True, count=count, limit=self.max_requests, reset_at=reset_at
            )

        # Rank of the newest entry that must expire before the next request fits.
        blocking = count - self.max_requests - 1
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.zrem(key, member)
            pipe.zrange(key, blocking, blocking, withscores=True)
            _, blocker = pipe.execute()
        except redis.RedisError as exc:
            log.warning(
                "rate_limit_release_failed",
                client=client_key,
                error=str(exc),
            )
        else:
            if blocker:
                reset_at = float(blocker[0][1]) + self.window_seconds

        retry_after = max(0.0, reset_at - now)
        log.info(
            "rate_limit_denied",
            client=client_key,
            count=count,
            limit=self.max_requests,
            retry_after=round(retry_after, 3),
        )
        return RateLimitDecision(
            allowed=False,
            count=count,
            limit=self.max_requests,
            retry_after=retry_after,
            reset_at=reset_at,
        )


def client_key_from_headers(forwarded_for: str | None, remote_addr: str) -> str:
    """Client identity: first X-Forwarded-For entry, else the remote address."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return remote_addr
