"""
Public facade for the ephemeral-address payment forwarding package.

The most useful pieces are re-exported so integrators can
``from forward_payments import ...`` without navigating the package.
"""

from .api import collect_payment, create_payment_session
from .core import (
    AsyncioScheduler,
    ConfigError,
    EphemeralAccount,
    EvmLedgerClient,
    ForwardPaymentError,
    KeyMaterial,
    LedgerClient,
    NetworkError,
    PaymentSession,
    Scheduler,
    SessionConfig,
    SessionParameters,
    SessionSnapshot,
    SessionState,
    SessionStateError,
    TransferError,
    ValidationError,
    build_environment,
    load_env_file,
    load_session_config,
)
from .presenter import JsonPresenter, LoggingPresenter, SessionPresenter

__all__ = (
    "AsyncioScheduler",
    "ConfigError",
    "EphemeralAccount",
    "EvmLedgerClient",
    "ForwardPaymentError",
    "JsonPresenter",
    "KeyMaterial",
    "LedgerClient",
    "LoggingPresenter",
    "NetworkError",
    "PaymentSession",
    "Scheduler",
    "SessionConfig",
    "SessionParameters",
    "SessionPresenter",
    "SessionSnapshot",
    "SessionState",
    "SessionStateError",
    "TransferError",
    "ValidationError",
    "build_environment",
    "collect_payment",
    "create_payment_session",
    "load_env_file",
    "load_session_config",
)
