"""Admission decision data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from gatekeeper.app.ratelimit.models import RateLimitResult, RateLimitVerdict

# Opaque identifier of the rate limited entity (hashed API key or address)
ClientKey = str


class Decision(str, Enum):
    """Terminal state of one admission evaluation."""
    ALLOWED = "allowed"
    REJECTED_BY_POLICY = "rejected_by_policy"
    ALLOWED_DEGRADED = "allowed_degraded"
    UNAVAILABLE = "unavailable"

    @property
    def permitted(self) -> bool:
        return self in (Decision.ALLOWED, Decision.ALLOWED_DEGRADED)


@dataclass(frozen=True)
class FaultRecord:
    """A dependency failure absorbed during evaluation."""
    dependency: str
    error_type: str
    message: str

    @classmethod
    def from_exception(cls, dependency: str, exc: BaseException) -> "FaultRecord":
        return cls(
            dependency=dependency,
            error_type=type(exc).__name__,
            message=str(exc) or type(exc).__name__,
        )


@dataclass
class AdmissionOutcome:
    """Result of AdmissionController.evaluate.

    store_handle is set exactly when the decision permits the request;
    the caller owns it and must release it through the data store.
    """
    decision: Decision
    store_handle: Optional[Any] = None
    diagnostics: list[FaultRecord] = field(default_factory=list)
    verdict: RateLimitVerdict = RateLimitVerdict.UNAVAILABLE
    rate_limit: Optional[RateLimitResult] = None

    def __post_init__(self) -> None:
        if self.decision.permitted != (self.store_handle is not None):
            raise ValueError(
                f"store_handle must be present iff decision permits the request "
                f"(decision={self.decision.value})"
            )

    @property
    def degraded(self) -> bool:
        return self.decision is Decision.ALLOWED_DEGRADED
