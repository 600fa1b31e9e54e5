from .auth import build_auth_router
from .health import build_health_router
from .sessions import build_sessions_router

__all__ = ["build_auth_router", "build_health_router", "build_sessions_router"]
