"""
Stable top-level FastAPI application module.

Use from repository root:
    uvicorn juncture_backend.main_app:app --host 0.0.0.0 --port 3001

Builds a single-tenant app from the environment. Multi-tenant hosts call
juncture_backend.app.create_app() with their own context instead.
"""

from .app import create_app

# PUBLIC_INTERFACE
app = create_app()
