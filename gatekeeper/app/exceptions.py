"""Custom exceptions for gatekeeper."""


class GatekeeperException(Exception):
    """Base class for gatekeeper exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Gatekeeper error"):
        self.message = message
        super().__init__(message)


class DependencyFault(GatekeeperException):
    """A dependency (rate limiter or data store) failed.

    The admission controller converts these into diagnostics; they are
    never propagated past it.
    """
    status_code = 503

    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(message)


class ConnectionFault(DependencyFault):
    """A dependency could not be reached or initialized."""


class ProtocolFault(DependencyFault):
    """A dependency responded but the response could not be interpreted."""


class PolicyRejection(GatekeeperException):
    """The rate limiter denied the request.

    Not a fault: a correctly functioning limiter made a business decision.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        limit: int | None = None,
        reset_time: int | None = None,
        retry_after: int | None = None,
        message: str = "Rate limit exceeded. Please try again later.",
    ):
        self.limit = limit
        self.reset_time = reset_time
        self.retry_after = retry_after
        super().__init__(message)


class ServiceUnavailableError(GatekeeperException):
    """The data store could not be reached although policy permitted the request.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(
        self,
        retry_after: int = 30,
        message: str = "Service temporarily unavailable. Please retry later.",
    ):
        self.retry_after = retry_after
        super().__init__(message)
