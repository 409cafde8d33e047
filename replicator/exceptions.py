"""Custom exception classes for the replicator."""

from typing import Any, Optional


class ReplicatorException(Exception):
    """
    Base exception class for all replication errors.
    """
    pass


class ValidationError(ReplicatorException):
    """
    Raised when required request parameters are missing or conflict.
    """
    pass


class ResolutionError(ReplicatorException):
    """
    Raised when a node identifier does not name a trusted node.
    """
    pass


class ArtifactNotFoundError(ReplicatorException):
    """
    Raised when a policy cannot be found on a node.
    """
    pass


class VersionIncompatibleError(ReplicatorException):
    """
    Raised when source and target run different major versions.
    """
    pass


class ConflictError(ReplicatorException):
    """
    Raised when a replication for the same target and policy is already tracked,
    or when deleting a policy whose replication is still in flight.
    """
    pass


class NodeUnavailableError(ReplicatorException):
    """
    Raised when a node refuses the connection or the policy module is not provisioned.
    """
    pass


class RemoteRequestError(ReplicatorException):
    """
    Raised when a node answers with an unexpected status or body.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteJobFailedError(ReplicatorException):
    """
    Raised when a remote job reaches the FAILURE status.
    """

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class RemoteJobTimeoutError(ReplicatorException):
    """
    Raised when a remote job does not reach a terminal status before its deadline.
    """

    def __init__(self, message: str, last_payload: Any = None):
        super().__init__(message)
        self.last_payload = last_payload


class TransferError(ReplicatorException):
    """
    Raised when a file download or upload fails mid-transfer.
    """
    pass


class CacheCorruptionError(TransferError):
    """
    Raised when a staged file fails validation; the file has been deleted.
    """
    pass
