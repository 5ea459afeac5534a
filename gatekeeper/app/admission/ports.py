"""Dependency contracts consumed by the admission controller.

The controller depends on these abstractions (not the concrete Redis or
SQLAlchemy adapters) so either side can be swapped or faked in tests.
"""

from abc import ABC, abstractmethod
from typing import Any

from gatekeeper.app.ratelimit.models import RateLimitResult

RATE_LIMITER = "rate_limiter"
DATA_STORE = "data_store"


class RateLimitPort(ABC):
    """Abstract rate limiter backed by some quota store."""

    @abstractmethod
    async def connect(self) -> Any:
        """Open (or reuse) a connection to the quota store.

        Returns:
            Handle to pass to check_and_reserve

        Raises:
            ConnectionFault: If the quota store is unreachable
        """
        pass

    @abstractmethod
    async def check_and_reserve(self, handle: Any, key: str) -> RateLimitResult:
        """Reserve one quota slot for key.

        Args:
            handle: Value returned by connect()
            key: Client key being limited

        Returns:
            RateLimitResult with allowed status and metadata

        Raises:
            ProtocolFault: If the quota store answer cannot be interpreted
            ConnectionFault: If the connection drops mid-call
        """
        pass

    async def cleanup(self) -> int:
        """Drop quota state that has expired; returns how many keys went.

        Stores that expire keys themselves have nothing to do here.
        """
        return 0

    async def close(self) -> None:
        """Release any connection held by the limiter."""
        return None


class DataStorePort(ABC):
    """Abstract primary data store."""

    @abstractmethod
    async def acquire_connection(self) -> Any:
        """Acquire a usable connection.

        Ownership of the returned handle passes to the caller, who must hand
        it back through release().

        Raises:
            ConnectionFault: If the store is unreachable
        """
        pass

    @abstractmethod
    async def release(self, handle: Any) -> None:
        """Return a handle obtained from acquire_connection()."""
        pass
