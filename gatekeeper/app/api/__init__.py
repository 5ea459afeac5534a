"""HTTP surface of gatekeeper."""

from gatekeeper.app.api.admission import (
    AdmittedSessionDep,
    admitted_session,
    client_key_from_request,
    get_admission_controller,
)
from gatekeeper.app.api.routes import router

__all__ = [
    "AdmittedSessionDep",
    "admitted_session",
    "client_key_from_request",
    "get_admission_controller",
    "router",
]
