"""Admission guard applied before a request consumes upstream resources.

The guard derives a caller identity from the inbound connection and asks
a pluggable policy whether to admit it. The default policy admits every
request; a token bucket per caller is available for deployments that need
a real limit.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

from nexi.config import RelayConfig

logger = logging.getLogger(__name__)

UNKNOWN_CALLER = "unknown"
DEFAULT_MAX_CALLERS = 10_000


def caller_identity(headers: Mapping[str, str], peer_host: str | None) -> str:
    """Derive the caller identity used for admission decisions.

    Args:
        headers: Inbound request headers (case-insensitive mapping).
        peer_host: Address of the connected peer, if known.

    Returns:
        The first x-forwarded-for address, else the peer address,
        else "unknown".
    """
    forwarded = headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if peer_host:
        return peer_host
    return UNKNOWN_CALLER


class AdmissionPolicy(Protocol):
    """Decides whether a caller may open a new exchange."""

    def admit(self, identity: str) -> bool: ...


class AllowAllPolicy:
    """Admits every request. The identity is only logged."""

    def admit(self, identity: str) -> bool:
        return True


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketPolicy:
    """Per-caller token bucket.

    Each caller starts with ``burst`` tokens, refilled continuously at
    ``rate_per_minute`` tokens per minute. An exchange costs one token.

    At most ``max_callers`` buckets are kept. The least recently seen caller
    is evicted first and starts over with a full bucket if it returns.
    """

    def __init__(
        self,
        rate_per_minute: int,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
        max_callers: int = DEFAULT_MAX_CALLERS,
    ) -> None:
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        if max_callers < 1:
            raise ValueError("max_callers must be at least 1")
        self._rate_per_second = rate_per_minute / 60.0
        self._burst = float(burst)
        self._clock = clock
        self._max_callers = max_callers
        self._buckets: OrderedDict[str, _Bucket] = OrderedDict()

    @property
    def tracked_callers(self) -> int:
        return len(self._buckets)

    def admit(self, identity: str) -> bool:
        now = self._clock()
        bucket = self._buckets.get(identity)
        if bucket is None:
            bucket = _Bucket(tokens=self._burst, updated_at=now)
            self._buckets[identity] = bucket
            if len(self._buckets) > self._max_callers:
                evicted, _ = self._buckets.popitem(last=False)
                logger.debug(f"Evicted token bucket for {evicted}")
        else:
            self._buckets.move_to_end(identity)
            elapsed = max(0.0, now - bucket.updated_at)
            bucket.tokens = min(self._burst, bucket.tokens + elapsed * self._rate_per_second)
            bucket.updated_at = now

        if bucket.tokens >= 1.0:
            bucket.tokens -= 1.0
            return True

        logger.debug(f"Token bucket empty for {identity}")
        return False


def policy_from_config(config: RelayConfig) -> AdmissionPolicy:
    """Build the admission policy described by the configuration."""
    if config.rate_limit_per_minute > 0:
        logger.info(
            f"Rate limiting enabled: {config.rate_limit_per_minute}/min, "
            f"burst {config.rate_limit_burst}"
        )
        return TokenBucketPolicy(config.rate_limit_per_minute, config.rate_limit_burst)
    return AllowAllPolicy()
