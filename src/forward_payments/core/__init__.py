"""
Core primitives that implement the ephemeral-address forwarding lifecycle.
"""

from .amounts import (
    format_amount,
    from_base_units,
    is_valid_address,
    normalize_address,
    parse_amount,
    to_base_units,
)
from .clock import AsyncioScheduler, ManualScheduler, Scheduler, SessionClock, TaskHandle
from .config import SessionConfig, SessionParameters, load_session_config
from .environment import SessionEnvironment, build_environment, load_env_file
from .errors import (
    ConfigError,
    ForwardPaymentError,
    NetworkError,
    SessionStateError,
    TransferError,
    ValidationError,
)
from .ledger import EphemeralAccount, EvmLedgerClient, KeyMaterial, LedgerClient
from .session import PaymentSession, SessionObserver, SessionSnapshot, SessionState

__all__ = [
    "AsyncioScheduler",
    "ConfigError",
    "EphemeralAccount",
    "EvmLedgerClient",
    "ForwardPaymentError",
    "KeyMaterial",
    "LedgerClient",
    "ManualScheduler",
    "NetworkError",
    "PaymentSession",
    "Scheduler",
    "SessionClock",
    "SessionConfig",
    "SessionEnvironment",
    "SessionObserver",
    "SessionParameters",
    "SessionSnapshot",
    "SessionState",
    "SessionStateError",
    "TaskHandle",
    "TransferError",
    "ValidationError",
    "build_environment",
    "format_amount",
    "from_base_units",
    "is_valid_address",
    "load_env_file",
    "load_session_config",
    "normalize_address",
    "parse_amount",
    "to_base_units",
]
