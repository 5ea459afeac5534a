"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RateLimitVerdict(str, Enum):
    """Outcome of one rate limit attempt.

    UNAVAILABLE means the limiter itself could not be consulted; it is
    never treated as DENY.
    """
    ADMIT = "admit"
    DENY = "deny"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None

    @property
    def verdict(self) -> RateLimitVerdict:
        return RateLimitVerdict.ADMIT if self.allowed else RateLimitVerdict.DENY


@dataclass
class RateLimitEntry:
    """Entry for tracking rate limit state (sliding window)."""
    requests: int = 0
    window_start: float = field(default_factory=time.time)


@dataclass
class TokenBucket:
    """Token bucket state for token bucket algorithm."""
    tokens: float = field(default_factory=float)
    last_update: float = field(default_factory=time.time)
