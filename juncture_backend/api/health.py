# PUBLIC_INTERFACE
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..context import AppContext
from .deps import get_context

router = APIRouter()

@router.get(
    "/",
    tags=["Health"],
    summary="Health Check",
    description="Health check endpoint indicating the API is up.\n\nReturns:\n    JSON with status and a simple message.",
)
def health_check():
    """Simple health check endpoint."""
    return JSONResponse({"status": "ok", "message": "juncture_backend running"})

@router.get(
    "/health",
    tags=["Health"],
    summary="Health Check (with cache probe)",
    description="Same payload as '/', plus whether the cache answers. A down cache degrades latency only.",
)
def health_check_alias(ctx: AppContext = Depends(get_context)):
    """Health endpoint reporting cache reachability."""
    return JSONResponse({
        "status": "ok",
        "message": "juncture_backend running",
        "cache": "ok" if ctx.cache.ping() else "unavailable",
    })
