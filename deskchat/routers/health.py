"""
Health router — GET /health endpoint.

Used by the desktop shell to wait for the backend before opening the
WebSocket channel.
"""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Return a simple health status, including whether a generation is running."""
    engine = request.app.state.engine
    return {"status": "healthy", "service": "deskchat", "busy": engine.busy}
