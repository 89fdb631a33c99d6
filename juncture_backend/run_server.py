#!/usr/bin/env python3
"""
Convenience launcher to run the FastAPI app bound to 0.0.0.0:3001.

Usage:
  python -m juncture_backend.run_server
  or the `juncture-backend` console script
"""

# PUBLIC_INTERFACE
def main():
    """Start uvicorn for the juncture backend on the configured host/port."""
    import os
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "3001"))

    # Use the fully qualified path to avoid double-importing the app
    uvicorn.run("juncture_backend.main_app:app", host=host, port=port, reload=False, lifespan="on")


if __name__ == "__main__":
    main()
