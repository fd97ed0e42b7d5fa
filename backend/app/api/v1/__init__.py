"""API v1 router configuration."""

from fastapi import APIRouter

from app.api.v1 import accounts, lifecycle

api_router = APIRouter()

api_router.include_router(accounts.router, prefix="/accounts", tags=["cloud-accounts"])
api_router.include_router(lifecycle.router, prefix="/lifecycle", tags=["resource-lifecycle"])
