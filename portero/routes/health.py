"""Liveness endpoint; like every route, it sits behind the IP allow-list."""

import logging

from fastapi import APIRouter

router = APIRouter(tags=["health"])

log = logging.getLogger("uvicorn.error")


@router.get("/health", summary="Liveness probe")
def health() -> dict[str, str]:
    """Liveness probe: always returns 200 if the service is running and the
    caller got past the gatekeeper."""
    log.debug("Liveness check")
    return {"status": "alive"}
