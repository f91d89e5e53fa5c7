# HTTP surface
from .routes_auth import router as auth_router
from .routes_sync import router as sync_router
from .routes_moderation import router as moderation_router
from .errors import install_error_handlers

__all__ = [
    "auth_router",
    "sync_router",
    "moderation_router",
    "install_error_handlers",
]
