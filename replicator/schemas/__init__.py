"""Pydantic schemas for API requests and responses."""

from replicator.schemas.replication import (
    SubmitReplicationRequest,
    PolicyStatus,
    SubmitReplicationResponse,
    DeletePolicyResponse,
    ErrorResponse
)

__all__ = [
    "SubmitReplicationRequest",
    "PolicyStatus",
    "SubmitReplicationResponse",
    "DeletePolicyResponse",
    "ErrorResponse"
]
