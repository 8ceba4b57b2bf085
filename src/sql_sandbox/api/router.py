"""Route aggregation.

Probes stay unversioned at the root; every functional endpoint lives
under ``/v1``.
"""

from fastapi import APIRouter

from sql_sandbox.api.health import router as health_router
from sql_sandbox.api.sql import router as sql_router

API_VERSION_PREFIX = "/v1"

v1_router = APIRouter(prefix=API_VERSION_PREFIX)
v1_router.include_router(sql_router)

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(v1_router)
