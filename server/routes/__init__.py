"""API routes package."""

from server.routes.feed_routes import router as feed_router
from server.routes.publication_routes import router as publication_router

__all__ = ["feed_router", "publication_router"]
