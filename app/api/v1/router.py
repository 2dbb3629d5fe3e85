from fastapi import APIRouter
from app.api.v1.routes import instances, n8n, scans

api_router = APIRouter()

api_router.include_router(instances.router, prefix="/instances", tags=["instances"])
api_router.include_router(scans.router, prefix="/scans", tags=["scans"])
api_router.include_router(n8n.router, prefix="/n8n", tags=["n8n"])
