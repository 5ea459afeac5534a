"""Request admission: decision models, dependency ports and the controller."""

from gatekeeper.app.admission.controller import AdmissionController
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

__all__ = [
    "AdmissionController",
    "AdmissionOutcome",
    "ClientKey",
    "Decision",
    "FaultRecord",
    "DataStorePort",
    "RateLimitPort",
    "DATA_STORE",
    "RATE_LIMITER",
]
