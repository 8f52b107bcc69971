"""
Public, high-level helpers for running a forwarding payment session.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import requests

from .core.amounts import AmountLike
from .core.clock import Scheduler
from .core.config import SessionConfig, SessionParameters, load_session_config
from .core.ledger import EvmLedgerClient, LedgerClient
from .core.session import PaymentSession, SessionObserver, SessionSnapshot

__all__ = [
    "collect_payment",
    "create_payment_session",
]


def create_payment_session(
    *,
    config: Optional[SessionConfig] = None,
    ledger: Optional[LedgerClient] = None,
    scheduler: Optional[Scheduler] = None,
    http_session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[SessionParameters] = None,
    **fields: Any,
) -> PaymentSession:
    """
    Construct a :class:`PaymentSession`.

    Callers can supply a ready-made :class:`SessionConfig` or let the helper
    assemble one from environment data. Without ``ledger`` an
    :class:`EvmLedgerClient` is built from the configuration.
    """
    if config is not None:
        extras = (overrides, base, parameters, *fields.values())
        if any(item is not None and item != {} for item in extras):
            raise ValueError(
                "Provide either a pre-built SessionConfig or individual parameters, not both."
            )
        cfg = config
    else:
        cfg = load_session_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            parameters=parameters,
            **fields,
        )

    if ledger is None:
        ledger = EvmLedgerClient.from_config(cfg, session=http_session)
    return PaymentSession(ledger, cfg, scheduler=scheduler)


async def collect_payment(
    destination_address: str,
    target_amount: AmountLike,
    *,
    session: Optional[PaymentSession] = None,
    observer: Optional[SessionObserver] = None,
    **kwargs: Any,
) -> SessionSnapshot:
    """
    Run one session to completion and return its final snapshot.

    ``kwargs`` go to :func:`create_payment_session` when no ``session`` is
    given. Validation errors propagate before anything is provisioned.
    """
    owned = session is None
    if session is None:
        session = create_payment_session(**kwargs)
    unsubscribe = session.subscribe(observer) if observer is not None else None
    try:
        session.start(destination_address, target_amount)
        return await session.wait_until_settled()
    finally:
        if unsubscribe is not None:
            unsubscribe()
        if owned:
            session.close()
            session.ledger.close()
