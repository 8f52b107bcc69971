"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import pytest

from forward_payments.core.clock import ManualScheduler
from forward_payments.core.config import SessionConfig
from forward_payments.core.ledger import EphemeralAccount, KeyMaterial, LedgerClient
from forward_payments.core.session import PaymentSession, SessionSnapshot

DESTINATION = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
WEI = 10**18


class FakeLedger(LedgerClient):
    """In-memory ledger with scriptable failures and gates."""

    network = "ethereum"

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.balances: Dict[str, int] = {}
        self.accounts: List[EphemeralAccount] = []
        self.balance_calls: List[str] = []
        self.transfers: List[Tuple[str, str, int]] = []
        self.balance_errors: List[Exception] = []
        self.transfer_errors: List[Exception] = []
        self.balance_gate: Optional[asyncio.Event] = None
        self.transfer_gate: Optional[asyncio.Event] = None
        self.transfer_hook: Optional[Callable[[], Awaitable[None]]] = None
        self.closed = False

    @property
    def create_calls(self) -> int:
        return len(self.accounts)

    def create_address(self) -> EphemeralAccount:
        index = next(self._counter)
        account = EphemeralAccount(
            address="0x" + f"{index:040x}",
            key=KeyMaterial(index.to_bytes(32, "big")),
        )
        self.accounts.append(account)
        return account

    async def get_balance(self, address: str) -> int:
        self.balance_calls.append(address)
        if self.balance_gate is not None:
            await self.balance_gate.wait()
        if self.balance_errors:
            raise self.balance_errors.pop(0)
        return self.balances.get(address, 0)

    async def transfer(self, source: EphemeralAccount, destination: str, amount: int) -> str:
        self.transfers.append((source.address, destination, amount))
        if self.transfer_gate is not None:
            await self.transfer_gate.wait()
        if self.transfer_hook is not None:
            await self.transfer_hook()
        if self.transfer_errors:
            raise self.transfer_errors.pop(0)
        source.key.reveal()
        self.balances[source.address] = self.balances.get(source.address, 0) - amount
        return f"0xtx{len(self.transfers)}"

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep FWD_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("FWD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def config() -> SessionConfig:
    return SessionConfig()


@pytest.fixture
def session(ledger: FakeLedger, config: SessionConfig, scheduler: ManualScheduler) -> PaymentSession:
    return PaymentSession(ledger, config, scheduler=scheduler)


@pytest.fixture
def snapshots(session: PaymentSession) -> List[SessionSnapshot]:
    """Every snapshot the session publishes, in order."""
    received: List[SessionSnapshot] = []
    session.subscribe(received.append)
    return received


def wei(amount: str) -> int:
    return int(Decimal(amount) * WEI)
