"""Request admission controller.

Each request is classified into one of the Decision states. The rate
limiter and the data store are consulted in two independent fault
boundaries: a limiter failure degrades admission but can never abort or
skip the store acquisition, and a store failure yields UNAVAILABLE rather
than an exception. evaluate() always returns an AdmissionOutcome.
"""

import asyncio
from typing import Any, Optional

from gatekeeper.app.admission.models import (
    AdmissionOutcome,
    ClientKey,
    Decision,
    FaultRecord,
)
from gatekeeper.app.admission.ports import (
    DATA_STORE,
    RATE_LIMITER,
    DataStorePort,
    RateLimitPort,
)
from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import get_log_context, get_logger
from gatekeeper.app.exceptions import ProtocolFault
from gatekeeper.app.ratelimit.models import RateLimitResult, RateLimitVerdict

logger = get_logger(__name__)

MAX_CLIENT_KEY_LENGTH = 512


def _timeout_record(dependency: str, timeout: float) -> FaultRecord:
    return FaultRecord(
        dependency=dependency,
        error_type="TimeoutError",
        message=f"{dependency} did not respond within {timeout}s",
    )


class AdmissionController:
    """Gate requests through an optional rate limiter, then the data store.

    Holds no per-request state; one instance serves concurrent evaluations.
    """

    def __init__(
        self,
        data_store: DataStorePort,
        rate_limiter: Optional[RateLimitPort] = None,
        rate_limit_timeout: Optional[float] = None,
        store_timeout: Optional[float] = None,
    ):
        """Initialize the controller.

        Args:
            data_store: Primary store the request needs a connection to
            rate_limiter: Optional limiter; None disables rate limiting
            rate_limit_timeout: Seconds allowed for connect + check
            store_timeout: Seconds allowed for store acquisition
        """
        self.data_store = data_store
        self.rate_limiter = rate_limiter
        if rate_limit_timeout is None:
            rate_limit_timeout = settings.rate_limit_timeout_seconds
        if store_timeout is None:
            store_timeout = settings.store_timeout_seconds
        self.rate_limit_timeout = rate_limit_timeout
        self.store_timeout = store_timeout

    async def evaluate(self, key: ClientKey) -> AdmissionOutcome:
        """Classify one request.

        Args:
            key: Client key the rate limit applies to

        Returns:
            AdmissionOutcome; diagnostics lists every absorbed fault in order
        """
        diagnostics: list[FaultRecord] = []

        verdict, rate_limit = await self._check_rate_limit(key, diagnostics)

        if verdict is RateLimitVerdict.DENY:
            logger.info(
                "Request rejected by rate limit policy",
                extra=get_log_context(
                    client_key=key,
                    decision=Decision.REJECTED_BY_POLICY.value,
                    retry_after=rate_limit.retry_after if rate_limit else None,
                ),
            )
            return AdmissionOutcome(
                decision=Decision.REJECTED_BY_POLICY,
                diagnostics=diagnostics,
                verdict=verdict,
                rate_limit=rate_limit,
            )

        provisional = (
            Decision.ALLOWED
            if verdict is RateLimitVerdict.ADMIT
            else Decision.ALLOWED_DEGRADED
        )

        handle = await self._acquire_store(key, diagnostics)
        if handle is None:
            return AdmissionOutcome(
                decision=Decision.UNAVAILABLE,
                diagnostics=diagnostics,
                verdict=verdict,
                rate_limit=rate_limit,
            )

        if provisional is Decision.ALLOWED_DEGRADED:
            logger.info(
                "Request admitted without rate limit check",
                extra=get_log_context(client_key=key, decision=provisional.value),
            )
        return AdmissionOutcome(
            decision=provisional,
            store_handle=handle,
            diagnostics=diagnostics,
            verdict=verdict,
            rate_limit=rate_limit,
        )

    async def _check_rate_limit(
        self,
        key: ClientKey,
        diagnostics: list[FaultRecord],
    ) -> tuple[RateLimitVerdict, Optional[RateLimitResult]]:
        """Rate limiter fault boundary.

        Only ever returns; a failure here becomes a diagnostic and the
        UNAVAILABLE verdict.
        """
        if self.rate_limiter is None:
            return RateLimitVerdict.ADMIT, None

        try:
            result = await asyncio.wait_for(
                self._reserve(key), timeout=self.rate_limit_timeout
            )
        except TimeoutError:
            record = _timeout_record(RATE_LIMITER, self.rate_limit_timeout)
        except Exception as e:
            record = FaultRecord.from_exception(RATE_LIMITER, e)
        else:
            return result.verdict, result

        diagnostics.append(record)
        logger.warning(
            f"Rate limiter unavailable ({record.error_type}: {record.message}); "
            "failing open",
            extra=get_log_context(client_key=key, dependency=RATE_LIMITER),
        )
        return RateLimitVerdict.UNAVAILABLE, None

    async def _reserve(self, key: ClientKey) -> RateLimitResult:
        if not isinstance(key, str) or not key.strip():
            raise ProtocolFault(RATE_LIMITER, "client key is empty")
        if len(key) > MAX_CLIENT_KEY_LENGTH:
            raise ProtocolFault(
                RATE_LIMITER,
                f"client key too long (max {MAX_CLIENT_KEY_LENGTH} characters)",
            )
        handle = await self.rate_limiter.connect()
        result = await self.rate_limiter.check_and_reserve(handle, key)
        if not isinstance(result, RateLimitResult):
            raise ProtocolFault(
                RATE_LIMITER,
                f"rate limiter returned {type(result).__name__}, not a RateLimitResult",
            )
        return result

    async def _acquire_store(
        self,
        key: ClientKey,
        diagnostics: list[FaultRecord],
    ) -> Optional[Any]:
        """Data store fault boundary; returns None when no handle was acquired."""
        try:
            handle = await asyncio.wait_for(
                self.data_store.acquire_connection(), timeout=self.store_timeout
            )
        except TimeoutError:
            record = _timeout_record(DATA_STORE, self.store_timeout)
        except Exception as e:
            record = FaultRecord.from_exception(DATA_STORE, e)
        else:
            if handle is not None:
                return handle
            record = FaultRecord(
                dependency=DATA_STORE,
                error_type="ConnectionFault",
                message="data store returned no connection",
            )

        diagnostics.append(record)
        logger.error(
            f"Data store unavailable ({record.error_type}: {record.message})",
            extra=get_log_context(
                client_key=key,
                decision=Decision.UNAVAILABLE.value,
                dependency=DATA_STORE,
            ),
        )
        return None
