from fastapi import APIRouter
from sla_engine.api.v1 import sla, sse, metrics

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(sla.router, prefix="/sla", tags=["sla"])
api_router.include_router(sse.router, prefix="/sse", tags=["sse"])
api_router.include_router(metrics.router, tags=["monitoring"])
