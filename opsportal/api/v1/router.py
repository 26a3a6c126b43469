from fastapi import APIRouter

from opsportal.api.v1.endpoints import dispatches


api_router = APIRouter(prefix="/api/v1")

# Dispatch Workflow
api_router.include_router(dispatches.router, prefix="/dispatches", tags=["Dispatch"])
