"""API routes package."""

from gateway.routes.operation_routes import router as operation_router

__all__ = ["operation_router"]
