import asyncio
import traceback
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gatekeeper.app.admission.controller import AdmissionController
from gatekeeper.app.admission.ports import RateLimitPort
from gatekeeper.app.api.routes import router as admission_router
from gatekeeper.app.core.config import settings
from gatekeeper.app.core.logging import get_logger, setup_logging
from gatekeeper.app.db.async_session import close_async_engine
from gatekeeper.app.db.store import SqlAlchemyDataStore
from gatekeeper.app.exceptions import PolicyRejection, ServiceUnavailableError
from gatekeeper.app.middleware.request_id import RequestIdMiddleware, get_request_id
from gatekeeper.app.ratelimit.factory import build_rate_limiter

logger = get_logger(__name__)


def build_admission_controller() -> AdmissionController:
    """Build the controller from the global settings."""
    return AdmissionController(
        data_store=SqlAlchemyDataStore(),
        rate_limiter=build_rate_limiter(settings),
        rate_limit_timeout=settings.rate_limit_timeout_seconds,
        store_timeout=settings.store_timeout_seconds,
    )


async def sweep_rate_limiter(rate_limiter: RateLimitPort, interval: float) -> None:
    """Run rate_limiter.cleanup() every interval seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await rate_limiter.cleanup()
        except Exception:
            logger.exception("Rate limiter cleanup failed")
            continue
        if removed:
            logger.debug(f"Rate limiter cleanup dropped {removed} keys")


def create_app(controller: Optional[AdmissionController] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        controller: Pre-built controller; when omitted one is built from
            settings at startup and its resources closed at shutdown

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = getattr(app.state, "admission_controller", None) is None
        if owned:
            app.state.admission_controller = build_admission_controller()

        rate_limiter = app.state.admission_controller.rate_limiter
        if rate_limiter is not None:
            app.state.quota_sweeper = asyncio.create_task(
                sweep_rate_limiter(rate_limiter, settings.rate_limit_window_seconds)
            )

        logger.info(
            "Application startup complete",
            extra={
                "rate_limiting": settings.rate_limit_enabled,
                "rate_limit_backend": settings.rate_limit_backend,
                "debug_mode": settings.debug,
            }
        )

        yield

        sweeper = app.state.quota_sweeper
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            app.state.quota_sweeper = None

        if owned:
            if rate_limiter is not None:
                await rate_limiter.close()
            await close_async_engine()
            app.state.admission_controller = None

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Gatekeeper",
        description="Request admission with rate limiting that degrades instead of failing",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.admission_controller = controller
    app.state.quota_sweeper = None

    app.add_middleware(RequestIdMiddleware)

    app.include_router(admission_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with data store and rate limiter status; never fails."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}
        admission: AdmissionController = request.app.state.admission_controller

        try:
            handle = await asyncio.wait_for(
                admission.data_store.acquire_connection(),
                timeout=admission.store_timeout,
            )
            await admission.data_store.release(handle)
            health_status["components"]["database"] = {"status": "ok"}
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {
                "status": "error",
                "error": (str(e) or type(e).__name__)[:100]  # Truncate for security
            }

        if admission.rate_limiter is None:
            health_status["components"]["rate_limiter"] = {"status": "disabled"}
        else:
            try:
                await asyncio.wait_for(
                    admission.rate_limiter.connect(),
                    timeout=admission.rate_limit_timeout,
                )
                health_status["components"]["rate_limiter"] = {"status": "ok"}
            except Exception as e:
                # Requests are still admitted (degraded) without the limiter
                health_status["status"] = "degraded"
                health_status["components"]["rate_limiter"] = {
                    "status": "error",
                    "error": (str(e) or type(e).__name__)[:100]
                }

        return health_status

    @app.exception_handler(PolicyRejection)
    async def policy_rejection_handler(request: Request, exc: PolicyRejection) -> JSONResponse:
        """Handle PolicyRejection and return HTTP 429 response."""
        retry_after = exc.retry_after or settings.rate_limit_window_seconds
        headers = {"Retry-After": str(retry_after), "X-RateLimit-Remaining": "0"}
        if exc.limit is not None:
            headers["X-RateLimit-Limit"] = str(exc.limit)
        if exc.reset_time is not None:
            headers["X-RateLimit-Reset"] = str(exc.reset_time)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "rate_limit_exceeded",
                "message": exc.message,
                "retry_after": retry_after,
            },
            headers=headers,
        )

    @app.exception_handler(ServiceUnavailableError)
    async def unavailable_handler(request: Request, exc: ServiceUnavailableError) -> JSONResponse:
        """Handle ServiceUnavailableError and return HTTP 503 response."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "service_unavailable",
                "message": exc.message,
                "request_id": get_request_id(request),
            },
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; debug mode adds the
        exception message and type.
        """
        request_id = get_request_id(request)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc(),
            }
        )

        content = {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
