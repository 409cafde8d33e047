"""API routes package."""

from replicator.routes.replication_routes import router as replication_router

__all__ = ["replication_router"]
