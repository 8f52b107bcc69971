"""
Presenters that render session snapshots and relay user intents.
"""

from __future__ import annotations

import abc
import json
import logging
import sys
from typing import Dict, Optional, TextIO

from .core.amounts import AmountLike, format_amount, shorten_address
from .core.errors import ValidationError
from .core.session import PaymentSession, SessionSnapshot, SessionState

__all__ = [
    "JsonPresenter",
    "LoggingPresenter",
    "SessionPresenter",
]

logger = logging.getLogger(__name__)


class SessionPresenter(abc.ABC):
    """
    Base presenter bound to one :class:`PaymentSession`.

    Subclasses implement :meth:`render`, which receives every snapshot the
    session publishes. Validation failures from :meth:`start` are kept in
    :attr:`field_errors` keyed by the offending field.
    """

    def __init__(self, session: PaymentSession) -> None:
        self.session = session
        self.field_errors: Dict[str, str] = {}
        self._unsubscribe = session.subscribe(self.render)

    @abc.abstractmethod
    def render(self, snapshot: SessionSnapshot) -> None:
        ...

    def render_field_error(self, error: ValidationError) -> None:
        return None

    def start(self, destination_address: str, target_amount: AmountLike) -> bool:
        self.field_errors = {}
        try:
            self.session.start(destination_address, target_amount)
        except ValidationError as exc:
            self.field_errors[exc.field] = exc.message
            self.render_field_error(exc)
            return False
        return True

    def reset(self) -> None:
        self.field_errors = {}
        self.session.reset()

    def detach(self) -> None:
        self._unsubscribe()


class LoggingPresenter(SessionPresenter):
    """Writes a human readable account of the session to the log."""

    def __init__(
        self,
        session: PaymentSession,
        *,
        symbol: str = "ETH",
        countdown_every: int = 30,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.symbol = symbol
        self.countdown_every = countdown_every
        self.log = log or logger
        self._last: Optional[SessionSnapshot] = None
        super().__init__(session)

    def render_field_error(self, error: ValidationError) -> None:
        self.log.error("%s: %s", error.field, error.message)

    def render(self, snapshot: SessionSnapshot) -> None:
        last = self._last
        self._last = snapshot
        new_session = last is None or last.session_id != snapshot.session_id

        if snapshot.state is SessionState.SETUP:
            if last is not None and last.state is not SessionState.SETUP:
                self.log.info("%s", snapshot.status_text)
            return

        if new_session:
            self.log.info(
                "Send %s %s to %s within %s (forwarding to %s)",
                format_amount(snapshot.target_amount),
                self.symbol,
                snapshot.ephemeral_address,
                snapshot.remaining_display,
                shorten_address(snapshot.destination_address or ""),
            )
        elif last.state is not snapshot.state:
            self.log.info("%s", snapshot.status_text)

        if snapshot.last_error and (new_session or snapshot.last_error != last.last_error):
            self.log.warning("%s", snapshot.last_error)

        if not new_session and snapshot.observed_balance != last.observed_balance:
            self.log.info(
                "Balance %s / %s %s",
                format_amount(snapshot.observed_balance),
                format_amount(snapshot.target_amount),
                self.symbol,
            )

        if (
            snapshot.state is SessionState.WAITING
            and not new_session
            and snapshot.remaining_seconds != last.remaining_seconds
            and self.countdown_every
            and snapshot.remaining_seconds % self.countdown_every == 0
        ):
            self.log.info("%s left", snapshot.remaining_display)

        if snapshot.state is SessionState.FORWARDED:
            self.log.info(
                "Forwarded %s %s in transaction %s",
                format_amount(snapshot.forwarded_amount),
                self.symbol,
                snapshot.forward_tx_id,
            )
        elif snapshot.state is SessionState.EXPIRED and snapshot.observed_balance > 0:
            self.log.warning(
                "Payment window closed with %s %s left at %s",
                format_amount(snapshot.observed_balance),
                self.symbol,
                snapshot.ephemeral_address,
            )


class JsonPresenter(SessionPresenter):
    """Emits one JSON document per snapshot, one per line."""

    def __init__(self, session: PaymentSession, *, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout
        super().__init__(session)

    def _write(self, document: Dict[str, object]) -> None:
        self.stream.write(json.dumps(document, sort_keys=True) + "\n")
        self.stream.flush()

    def render(self, snapshot: SessionSnapshot) -> None:
        self._write(snapshot.as_dict())

    def render_field_error(self, error: ValidationError) -> None:
        self._write({"error": error.code, "field": error.field, "message": error.message})
