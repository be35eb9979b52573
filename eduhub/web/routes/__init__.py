from .auth import auth_router
from .pages import pages_router

__all__ = ["auth_router", "pages_router"]
