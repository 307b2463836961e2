"""Exceptions raised by the arrears reconciler."""

from typing import Optional


class ArrearsReconcilerError(Exception):
    """Base exception for reconciler errors."""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ObligationReadError(ArrearsReconcilerError):
    """Raised when overdue rent schedules cannot be read. Aborts the run."""
    pass


class LeaseUnavailableError(ArrearsReconcilerError):
    """Raised when another run holds the reconciler lease."""
    pass


class ReconciliationTimeoutError(ArrearsReconcilerError):
    """Raised when a run exceeds its time budget. Safe to retry."""
    pass


class NotificationDispatchError(ArrearsReconcilerError):
    """Raised when a notification cannot be delivered after retries."""
    pass
