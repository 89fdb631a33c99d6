"""
Package marker for juncture_backend.

This ensures 'juncture_backend' is importable from the repository root,
so uvicorn juncture_backend.main_app:app works without modifying PYTHONPATH.
"""
# PUBLIC_INTERFACE
def get_version() -> str:
    """Return the juncture backend package version (static for now)."""
    return "0.1.0"
