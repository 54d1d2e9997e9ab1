"""
Reconcile Errors - Error taxonomy for the machine controller.

Not-found is deliberately absent from this module for reads: a missing
object is a valid observation and is returned as ``None``.
"""


class ReconcileError(Exception):
    """Base class for errors that end a reconcile pass."""

    retryable = True

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(ReconcileError):
    """Raised when a write is rejected because its version token is stale."""


class NotFoundError(ReconcileError):
    """Raised when a write targets an object that no longer exists."""


class TransientError(ReconcileError):
    """Raised for timeouts, network failures and an unavailable store."""


class InvalidMachineError(ReconcileError):
    """
    Raised when a Machine cannot be reconciled as written.

    The pass ends in error and is retried; retries stay no-ops until the
    Machine spec is corrected externally.
    """


class UnknownKindError(InvalidMachineError):
    """Raised when a reference names an API group or kind not in the scheme."""
