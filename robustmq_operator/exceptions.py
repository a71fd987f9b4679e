"""Operator error types."""

from typing import Optional


class OperatorError(Exception):
    """Base class for errors raised by the operator."""

    pass


class OwnershipError(OperatorError):
    """Raised when the instance cannot be set as controller of a resource."""

    def __init__(self, kind: str, name: str, reason: str):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot take ownership of {kind} {name}: {reason}")


class ApplyError(OperatorError):
    """Raised when creating or updating a managed resource fails.

    The remaining resources of the batch are not applied; the next
    reconciliation recomputes and retries the whole set.
    """

    def __init__(self, kind: str, name: str, action: str, cause: Exception):
        self.kind = kind
        self.name = name
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action} {kind} {name}: {cause}")


class StatusUpdateError(OperatorError):
    """Raised when the status subresource cannot be written."""

    def __init__(self, key: str, cause: Optional[Exception] = None):
        self.key = key
        self.cause = cause
        super().__init__(f"Failed to update status of {key}: {cause}")
