"""Service locator for the replication components shared with the routes."""

from typing import Optional

from fastapi import HTTPException, status

from replicator.artifact_cache import CacheSweeper
from replicator.orchestrator import ReplicationOrchestrator

_orchestrator: Optional[ReplicationOrchestrator] = None
_cache_sweeper: Optional[CacheSweeper] = None


def set_orchestrator(orchestrator: Optional[ReplicationOrchestrator]):
    """Set global orchestrator instance"""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator() -> Optional[ReplicationOrchestrator]:
    """Get global orchestrator instance"""
    return _orchestrator


def set_cache_sweeper(sweeper: Optional[CacheSweeper]):
    """Set global cache sweeper instance"""
    global _cache_sweeper
    _cache_sweeper = sweeper


def get_cache_sweeper() -> Optional[CacheSweeper]:
    """Get global cache sweeper instance"""
    return _cache_sweeper


def require_orchestrator() -> ReplicationOrchestrator:
    """Dependency returning the orchestrator, or 503 before startup has wired it"""
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Replication service is not ready"
        )
    return _orchestrator
