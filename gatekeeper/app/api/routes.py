"""Admission-gated API routes."""

from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text

from gatekeeper.app.api.admission import AdmittedSessionDep

router = APIRouter(prefix="/v1", tags=["admission"])


@router.get("/ping")
async def ping(request: Request, session: AdmittedSessionDep) -> dict[str, Any]:
    """Round-trip to the data store through the admission gate."""
    result = await session.execute(text("SELECT 1"))
    outcome = request.state.admission
    return {
        "status": "ok",
        "database": result.scalar_one() == 1,
        "admission": outcome.decision.value,
    }
