from __future__ import annotations

# Load .env and configure logging as early as possible
from . import startup  # noqa: F401

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from .api import health as health_router
from .api.errors import register_error_handlers
from .api.routers import connection_info, finalize_jira, jira, oauth
from .config import Settings
from .context import AppContext, build_context

_logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Health and readiness checks."},
    {"name": "OAuth", "description": "Start an OAuth flow and receive the provider callback."},
    {"name": "Finalize", "description": "Complete a connection from a connection code."},
    {"name": "Connection Info", "description": "Backend-facing connection status and access tokens."},
    {"name": "Jira", "description": "Jira connection details (site and selected project)."},
]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """ASGI middleware to assign/propagate X-Request-ID and echo it in responses."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# PUBLIC_INTERFACE
def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Create and configure the FastAPI app.

    Args:
        context: prebuilt AppContext (tests inject one). When omitted the context is built
            from Settings.from_env() with a single-tenant backend; multi-tenant hosts build
            their own context with a CloudContextManager and pass it in.
    """
    context = context or build_context(Settings.from_env())

    app = FastAPI(
        title="Juncture Connection Broker",
        description="OAuth connection broker: runs provider OAuth flows, stores connections "
                    "and hands out fresh access tokens.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    # Added last so it is outermost and every log line carries the id
    app.add_middleware(RequestIDMiddleware)

    register_error_handlers(app)

    app.include_router(health_router.router)
    app.include_router(oauth.router)
    app.include_router(finalize_jira.router)
    app.include_router(connection_info.router)
    app.include_router(jira.router)

    @app.on_event("shutdown")
    def _close_context() -> None:
        context.close()

    _logger.info("CORS configured with allow_credentials=True; allowed_origins=%s", context.settings.cors_origins)
    return app
