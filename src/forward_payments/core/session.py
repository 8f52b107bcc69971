"""
Payment session state machine.

A :class:`PaymentSession` is a single slot that holds at most one live
session. ``start`` provisions an ephemeral address and arms the clock; the
poll trigger watches the address until its balance meets the target and then
forwards everything except the fee reserve to the destination.

State graph::

    setup -> waiting
    waiting -> waiting | forwarding | expired
    forwarding -> forwarded | waiting
    forwarded, expired -> (reset) setup

Known gap: a session that keeps failing to forward until its deadline expires
with the funds still at the ephemeral address. The key is discarded on expiry
and nothing recovers those funds.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .amounts import AmountLike, format_amount, from_base_units, parse_amount
from .clock import AsyncioScheduler, Scheduler, SessionClock
from .config import SessionConfig
from .errors import NetworkError, SessionStateError, TransferError
from .ledger import EphemeralAccount, LedgerClient

__all__ = [
    "PaymentSession",
    "SessionObserver",
    "SessionSnapshot",
    "SessionState",
]

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    SETUP = "setup"
    WAITING = "waiting"
    FORWARDING = "forwarding"
    FORWARDED = "forwarded"
    EXPIRED = "expired"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.FORWARDED, SessionState.EXPIRED)

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    SessionState.SETUP: "Setup Payment",
    SessionState.WAITING: "Waiting for Payment",
    SessionState.FORWARDING: "Forwarding Payment",
    SessionState.FORWARDED: "Payment Complete",
    SessionState.EXPIRED: "Payment Expired",
}

_TRANSITIONS = {
    SessionState.SETUP: {SessionState.WAITING},
    SessionState.WAITING: {SessionState.FORWARDING, SessionState.EXPIRED},
    SessionState.FORWARDING: {SessionState.FORWARDED, SessionState.WAITING},
    SessionState.FORWARDED: set(),
    SessionState.EXPIRED: set(),
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session handed to observers."""

    state: SessionState
    session_id: Optional[str] = None
    observed_balance: Decimal = Decimal(0)
    target_amount: Optional[Decimal] = None
    remaining_seconds: int = 0
    window_seconds: int = 0
    destination_address: Optional[str] = None
    ephemeral_address: Optional[str] = None
    forward_tx_id: Optional[str] = None
    forwarded_amount: Optional[Decimal] = None
    last_error: Optional[str] = None
    deadline: Optional[datetime] = None

    @property
    def status_text(self) -> str:
        return self.state.label

    @property
    def remaining_display(self) -> str:
        minutes, seconds = divmod(max(self.remaining_seconds, 0), 60)
        return f"{minutes}:{seconds:02d}"

    @property
    def progress(self) -> float:
        """Fraction of the payment window still left, between 0 and 1."""
        if not self.window_seconds:
            return 0.0
        return max(0.0, min(1.0, self.remaining_seconds / self.window_seconds))

    def as_dict(self) -> Dict[str, Any]:
        def _amount(value: Optional[Decimal]) -> Optional[str]:
            return None if value is None else format_amount(value)

        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "observedBalance": _amount(self.observed_balance),
            "targetAmount": _amount(self.target_amount),
            "remainingSeconds": self.remaining_seconds,
            "destinationAddress": self.destination_address,
            "ephemeralAddress": self.ephemeral_address,
            "forwardTxId": self.forward_tx_id,
            "forwardedAmount": _amount(self.forwarded_amount),
            "lastError": self.last_error,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }


SessionObserver = Callable[[SessionSnapshot], None]


@dataclass(eq=False)
class _ActiveSession:
    session_id: str
    generation: int
    account: EphemeralAccount
    destination_address: str
    target_amount: Decimal
    target_base_units: int
    decimals: int
    fee_reserve: int
    window_seconds: int
    deadline: datetime
    deadline_at: float
    remaining_seconds: int
    clock: SessionClock
    state: SessionState = SessionState.WAITING
    observed_balance: int = 0
    forward_tx_id: Optional[str] = None
    forwarded_amount: Optional[int] = None
    last_error: Optional[str] = None
    poll_in_flight: bool = field(default=False, repr=False)


class PaymentSession:
    """
    Single-slot payment session.

    ``ledger`` is used for every address, balance and transfer operation.
    ``config`` values are copied into a session when it starts, so replacing
    :attr:`config` never affects a running session. With the default
    :class:`AsyncioScheduler`, ``start`` must be called from a running loop.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: Optional[SessionConfig] = None,
        *,
        scheduler: Optional[Scheduler] = None,
        wall_clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.ledger = ledger
        self.config = config or SessionConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self._wall_clock = wall_clock or (lambda: datetime.now(timezone.utc))
        self._active: Optional[_ActiveSession] = None
        self._generation = 0
        self._observers: List[SessionObserver] = []

    @property
    def state(self) -> SessionState:
        return self._active.state if self._active else SessionState.SETUP

    @property
    def ephemeral_address(self) -> Optional[str]:
        return self._active.account.address if self._active else None

    def snapshot(self) -> SessionSnapshot:
        active = self._active
        if active is None:
            return SessionSnapshot(state=SessionState.SETUP)
        forwarded = None
        if active.forwarded_amount is not None:
            forwarded = from_base_units(active.forwarded_amount, active.decimals)
        return SessionSnapshot(
            state=active.state,
            session_id=active.session_id,
            observed_balance=from_base_units(active.observed_balance, active.decimals),
            target_amount=active.target_amount,
            remaining_seconds=active.remaining_seconds,
            window_seconds=active.window_seconds,
            destination_address=active.destination_address,
            ephemeral_address=active.account.address,
            forward_tx_id=active.forward_tx_id,
            forwarded_amount=forwarded,
            last_error=active.last_error,
            deadline=active.deadline,
        )

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """Register ``observer``; returns a callable that unsubscribes it."""
        self._observers.append(observer)
        return functools.partial(self.unsubscribe, observer)

    def unsubscribe(self, observer: SessionObserver) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass

    def start(self, destination_address: str, target_amount: AmountLike) -> SessionSnapshot:
        """
        Validate the inputs and open a new session.

        Raises :class:`ValidationError` without touching the ledger when either
        input is rejected. A finished session still occupying the slot is
        replaced only once both inputs pass, so a rejected restart keeps the
        finished session and its state. A live session raises
        :class:`SessionStateError`.
        """
        if self._active is not None and not self._active.state.terminal:
            raise SessionStateError(
                f"session {self._active.session_id} is still {self._active.state.value}"
            )

        config = self.config
        destination = self.ledger.validate_address(destination_address)
        amount = parse_amount(
            target_amount,
            max_amount=config.max_amount,
            decimals=config.token_decimals,
            symbol=config.currency_symbol,
        )

        if self._active is not None:
            self._destroy()

        account = self.ledger.create_address()
        self._generation += 1
        window = config.payment_window_seconds
        active = _ActiveSession(
            session_id=uuid.uuid4().hex,
            generation=self._generation,
            account=account,
            destination_address=destination,
            target_amount=amount,
            target_base_units=config.to_base_units(amount),
            decimals=config.token_decimals,
            fee_reserve=config.network_fee_reserve,
            window_seconds=window,
            deadline=self._wall_clock() + timedelta(seconds=window),
            deadline_at=self.scheduler.time() + window,
            remaining_seconds=window,
            clock=SessionClock(self.scheduler, poll_interval=config.poll_interval_seconds),
        )
        self._active = active
        self._arm(active)
        logger.info(
            "Session %s waiting for %s %s at %s (forwarding to %s)",
            active.session_id,
            amount,
            config.currency_symbol,
            account.address,
            destination,
        )
        self._notify()
        return self.snapshot()

    def reset(self) -> SessionSnapshot:
        """Discard a finished session and return the slot to setup."""
        active = self._active
        if active is None:
            return self.snapshot()
        if not active.state.terminal:
            raise SessionStateError(
                f"cannot reset session {active.session_id} while {active.state.value}"
            )
        self._destroy()
        self._notify()
        return self.snapshot()

    def close(self) -> None:
        """Tear down whatever session is live, in any state."""
        if self._active is None:
            return
        if not self._active.state.terminal:
            logger.warning(
                "Closing session %s while %s; funds at %s are no longer watched",
                self._active.session_id,
                self._active.state.value,
                self._active.account.address,
            )
        self._destroy()
        self._notify()

    async def wait_until_settled(self) -> SessionSnapshot:
        """Wait for the live session to be forwarded or to expire."""
        if self._active is None:
            raise SessionStateError("no session has been started")
        if self._active.state.terminal:
            return self.snapshot()

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _observe(snapshot: SessionSnapshot) -> None:
            if future.done():
                return
            if snapshot.state.terminal:
                future.set_result(snapshot)
            elif snapshot.state is SessionState.SETUP:
                future.set_exception(SessionStateError("session was closed"))

        unsubscribe = self.subscribe(_observe)
        try:
            return await future
        finally:
            unsubscribe()

    async def tick(self) -> None:
        """Advance the countdown of the live session by one step."""
        if self._active is not None:
            await self._countdown(self._active.generation)

    async def poll(self) -> None:
        """Run one balance check for the live session."""
        if self._active is not None:
            await self._poll(self._active.generation)

    def _current(self, generation: int) -> Optional[_ActiveSession]:
        active = self._active
        if active is None or active.generation != generation:
            return None
        return active

    def _is_current(self, active: _ActiveSession) -> bool:
        return self._active is active and active.generation == self._generation

    def _remaining(self, active: _ActiveSession) -> int:
        return max(0, math.ceil(active.deadline_at - self.scheduler.time()))

    def _arm(self, active: _ActiveSession) -> None:
        active.clock.arm(
            functools.partial(self._countdown, active.generation),
            functools.partial(self._poll, active.generation),
        )

    def _destroy(self) -> None:
        active = self._active
        if active is None:
            return
        active.clock.cancel()
        active.account.discard()
        self._active = None
        logger.info("Session %s destroyed", active.session_id)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Session observer %r failed", observer)

    def _transition(self, active: _ActiveSession, target: SessionState) -> None:
        previous = active.state
        if target not in _TRANSITIONS[previous]:
            raise SessionStateError(f"illegal transition {previous.value} -> {target.value}")

        active.state = target
        if target is SessionState.WAITING:
            self._arm(active)
        else:
            active.clock.cancel()

        if target in (SessionState.FORWARDING, SessionState.FORWARDED):
            active.last_error = None
        if target is not SessionState.FORWARDED:
            active.remaining_seconds = self._remaining(active)

        logger.info(
            "Session %s: %s -> %s", active.session_id, previous.value, target.value
        )
        if target.terminal:
            self._settle(active)
        self._notify()

    def _settle(self, active: _ActiveSession) -> None:
        if active.state is SessionState.EXPIRED and active.observed_balance > 0:
            logger.warning(
                "Session %s expired holding %s base units at %s; funds are stranded",
                active.session_id,
                active.observed_balance,
                active.account.address,
            )
        active.account.discard()

    def _record_error(self, active: _ActiveSession, message: str) -> None:
        active.last_error = message
        self._notify()

    async def _countdown(self, generation: int) -> None:
        active = self._current(generation)
        if active is None or active.state is not SessionState.WAITING:
            return
        active.remaining_seconds = self._remaining(active)
        if active.remaining_seconds <= 0:
            self._transition(active, SessionState.EXPIRED)
        else:
            self._notify()

    async def _poll(self, generation: int) -> None:
        active = self._current(generation)
        if active is None or active.state is not SessionState.WAITING:
            return
        if active.poll_in_flight:
            logger.debug("Session %s: poll already in flight, skipping", active.session_id)
            return
        active.poll_in_flight = True
        try:
            await self._check_balance(active)
        finally:
            active.poll_in_flight = False

    async def _check_balance(self, active: _ActiveSession) -> None:
        try:
            balance = await self.ledger.get_balance(active.account.address)
        except NetworkError as exc:
            error: Optional[Exception] = exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure reading balance of %s", active.account.address)
            error = exc
        else:
            error = None

        if not self._is_current(active) or active.state is not SessionState.WAITING:
            logger.info(
                "Session %s: discarding balance result that arrived after %s",
                active.session_id,
                active.state.value,
            )
            return

        if error is not None:
            logger.warning("Session %s: balance check failed: %s", active.session_id, error)
            self._record_error(active, f"Failed to check balance: {error}")
            return

        if balance < active.observed_balance:
            logger.warning(
                "Session %s: balance of %s dropped from %s to %s",
                active.session_id,
                active.account.address,
                active.observed_balance,
                balance,
            )
        changed = balance != active.observed_balance
        active.observed_balance = balance

        if balance < active.target_base_units:
            if changed:
                self._notify()
            return

        await self._forward(active)

    async def _forward(self, active: _ActiveSession) -> None:
        amount = active.observed_balance - active.fee_reserve
        if amount <= 0:
            message = (
                f"balance {active.observed_balance} does not cover the "
                f"{active.fee_reserve} base unit fee reserve"
            )
            logger.warning("Session %s: %s", active.session_id, message)
            self._record_error(active, f"Failed to forward payment: {message}")
            return

        self._transition(active, SessionState.FORWARDING)
        logger.info(
            "Session %s: forwarding %s base units to %s",
            active.session_id,
            amount,
            active.destination_address,
        )
        try:
            tx_id = await self.ledger.transfer(
                active.account, active.destination_address, amount
            )
        except TransferError as exc:
            error: Optional[Exception] = exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure forwarding from %s", active.account.address)
            error = exc
        else:
            error = None

        if not self._is_current(active):
            logger.warning(
                "Session %s was torn down while forwarding; ignoring the outcome (%s)",
                active.session_id,
                error or tx_id,
            )
            return

        if error is not None:
            logger.warning("Session %s: forward failed: %s", active.session_id, error)
            active.last_error = f"Failed to forward payment: {error}"
            self._transition(active, SessionState.WAITING)
            if active.state is SessionState.WAITING and self._remaining(active) <= 0:
                self._transition(active, SessionState.EXPIRED)
            return

        active.forward_tx_id = tx_id
        active.forwarded_amount = amount
        self._transition(active, SessionState.FORWARDED)
