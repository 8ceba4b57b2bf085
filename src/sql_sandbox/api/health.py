"""Liveness and readiness checks."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness check; answers as long as the process serves requests."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness check over the record store and the database server.

    Each backend is reported separately so an operator can tell a Redis
    outage from a PostgreSQL one.  Backends not configured on the app
    count as unavailable.
    """
    checks: dict[str, bool] = {}
    for component in ("repository", "driver"):
        backend = getattr(request.app.state, component, None)
        checks[component] = backend is not None and await backend.health_check()

    healthy = all(checks.values())
    return JSONResponse(
        content={"status": "ready" if healthy else "not_ready", "checks": checks},
        status_code=200 if healthy else 503,
    )
