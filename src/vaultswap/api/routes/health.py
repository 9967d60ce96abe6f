"""Health check endpoints."""

from fastapi import APIRouter

from vaultswap import __version__
from vaultswap.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "vaultswap"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with redacted configuration."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "vaultswap",
        "version": __version__,
        "config": settings.get_safe_dict(),
    }
