"""API module."""

from ink.api.routes import router

__all__ = ["router"]
