"""Health check endpoint."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Return service liveness."""
    return {
        "status": "healthy",
        "service": "fieldpost",
        "version": "0.1.0",
    }
