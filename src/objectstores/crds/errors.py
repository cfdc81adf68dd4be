"""
Custom exception types for the ObjectStore operator.
"""
from typing import Optional


class ObjectStoreException(Exception):
    """Base exception for all objectstore errors."""
    pass


class KubeConfigError(ObjectStoreException):
    """Raised when the Kubernetes configuration cannot be loaded."""
    pass


class InvalidObjectStoreError(ObjectStoreException):
    """
    Raised when an ObjectStore cannot be turned into a resource graph.

    Retrying will keep failing until the user fixes the object.
    """
    pass


class ReconcileError(ObjectStoreException):
    """
    Raised when a call against the cluster API fails during reconciliation.

    The message names the resource and the operation that failed; the
    original error is always chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.resource = resource
        self.operation = operation
