"""AgriLease REST API."""

from agrilease.api.router import router

__all__ = ["router"]
