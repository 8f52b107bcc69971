"""
Exception taxonomy for the payment forwarding flow.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ConfigError",
    "ForwardPaymentError",
    "NetworkError",
    "SessionStateError",
    "TransferError",
    "ValidationError",
]


class ForwardPaymentError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(ForwardPaymentError):
    """Raised when the supplied configuration is invalid."""


class ValidationError(ForwardPaymentError):
    """
    Raised when a start intent carries an invalid destination or amount.

    ``field`` names the input that failed so a presenter can show the message
    next to it; ``code`` is one of ``invalid_address`` or ``invalid_amount``.
    """

    def __init__(self, field: str, code: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.code = code
        self.message = message


class NetworkError(ForwardPaymentError):
    """Raised when the ledger cannot be reached or answers with garbage."""


class TransferError(ForwardPaymentError):
    """Raised when a forward transaction cannot be submitted or confirmed."""

    def __init__(self, message: str, *, tx_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_id = tx_id


class SessionStateError(ForwardPaymentError):
    """Raised when an intent is not allowed in the session's current state."""
