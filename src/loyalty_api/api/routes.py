from fastapi import APIRouter

from .v1 import router as v1_router
from .v1.endpoints import health

api_router = APIRouter()
# Probes are served unversioned for load balancers as well as under /api/v1.
api_router.include_router(health.router, tags=["Health"], include_in_schema=False)
api_router.include_router(v1_router, prefix="/api/v1")
