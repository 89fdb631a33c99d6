from fastapi import Request

from ..context import AppContext


# PUBLIC_INTERFACE
def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the AppContext attached by create_app()."""
    return request.app.state.context
