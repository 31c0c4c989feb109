"""API routers for DockPulse."""

from fastapi import APIRouter
from app.api import auth, containers, images, metrics, system

api_router = APIRouter(prefix="/api/v1")

# Authentication routes (public and protected endpoints)
api_router.include_router(auth.router, tags=["authentication"])

# API routes (protected by authentication when auth is enabled)
api_router.include_router(metrics.router, prefix="/metrics", tags=["metrics"])
api_router.include_router(containers.router, prefix="/containers", tags=["containers"])
api_router.include_router(images.router, prefix="/images", tags=["images"])
api_router.include_router(system.router, prefix="/system", tags=["system"])

__all__ = ["api_router"]
