"""FastAPI integration of the admission controller.

Routes that touch the data store depend on admitted_session: it evaluates
the request, turns a policy rejection into 429 and an unreachable store
into 503, and otherwise hands the route a live session that is released
once the request completes.
"""

import hashlib
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.app.admission.controller import AdmissionController
from gatekeeper.app.admission.models import AdmissionOutcome, ClientKey, Decision
from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import get_log_context, get_logger
from gatekeeper.app.exceptions import PolicyRejection, ServiceUnavailableError
from gatekeeper.app.middleware.request_id import get_request_id

logger = get_logger(__name__)


def _hash(value: str) -> str:
    # 32 hex chars (128 bits) for collision resistance
    return hashlib.sha256(value.encode()).hexdigest()[:32]


def client_key_from_request(
    request: Request,
    trust_forwarded_for: Optional[bool] = None,
) -> ClientKey:
    """Get rate limit key for the request.

    Uses the Bearer token if available, otherwise falls back to the client
    IP address. Both are hashed so raw keys and addresses never reach the
    quota store. Returns an empty key when the request carries neither.

    Args:
        request: FastAPI request object
        trust_forwarded_for: Honour X-Forwarded-For (defaults to settings)

    Returns:
        Rate limit key string
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if api_key:
            return f"ratelimit:apikey:{_hash(api_key)}"

    if trust_forwarded_for is None:
        trust_forwarded_for = settings.rate_limit_trust_forwarded_for

    client_ip = ""
    forwarded = request.headers.get("X-Forwarded-For") if trust_forwarded_for else None
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    elif request.client is not None:
        client_ip = request.client.host or ""

    if not client_ip:
        return ""
    return f"ratelimit:ip:{_hash(client_ip)}"


def get_admission_controller(request: Request) -> AdmissionController:
    """Controller installed on app.state by create_app."""
    return request.app.state.admission_controller


def _set_rate_limit_headers(response: Response, outcome: AdmissionOutcome) -> None:
    result = outcome.rate_limit
    if result is not None:
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_time)
    if outcome.degraded:
        response.headers["X-Admission-Degraded"] = "true"


async def admitted_session(
    request: Request,
    response: Response,
    controller: Annotated[AdmissionController, Depends(get_admission_controller)],
) -> AsyncGenerator[AsyncSession, None]:
    """Admit the request and yield its data store session.

    Raises:
        PolicyRejection: The rate limiter denied the request (429)
        ServiceUnavailableError: The data store is unreachable (503)
    """
    key = client_key_from_request(request)
    outcome = await controller.evaluate(key)
    request.state.admission = outcome

    log_context = get_log_context(
        request_id=get_request_id(request),
        client_key=key or None,
        decision=outcome.decision.value,
        path=request.url.path,
        method=request.method,
        faults=len(outcome.diagnostics) or None,
    )

    if outcome.decision is Decision.REJECTED_BY_POLICY:
        result = outcome.rate_limit
        raise PolicyRejection(
            limit=result.limit if result else None,
            reset_time=result.reset_time if result else None,
            retry_after=result.retry_after if result else None,
        )

    if outcome.decision is Decision.UNAVAILABLE:
        logger.warning("Request refused, data store unavailable", extra=log_context)
        raise ServiceUnavailableError()

    logger.debug("Request admitted", extra=log_context)
    _set_rate_limit_headers(response, outcome)
    try:
        yield outcome.store_handle
    finally:
        await controller.data_store.release(outcome.store_handle)


# Type alias for FastAPI dependency injection
AdmittedSessionDep = Annotated[AsyncSession, Depends(admitted_session)]
