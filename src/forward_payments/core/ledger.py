"""
Ledger access for ephemeral receiving addresses.

:class:`LedgerClient` is the interface the payment session talks to.
:class:`EvmLedgerClient` binds it to an EVM chain over JSON-RPC: keys are
generated locally with :mod:`eth_account`, balances and transactions go
through the node with a plain :class:`requests.Session`.
"""

from __future__ import annotations

import abc
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from eth_account import Account
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from .amounts import normalize_address
from .config import SessionConfig
from .errors import NetworkError, TransferError

__all__ = [
    "EphemeralAccount",
    "EvmLedgerClient",
    "KeyMaterial",
    "LedgerClient",
]

logger = logging.getLogger(__name__)


class KeyMaterial:
    """
    Private key held in a mutable buffer so it can be wiped.

    The secret never appears in ``repr`` or ``str``.
    """

    __slots__ = ("_buffer",)

    def __init__(self, secret: bytes) -> None:
        self._buffer = bytearray(secret)

    @property
    def discarded(self) -> bool:
        return not self._buffer

    def reveal(self) -> bytes:
        if self.discarded:
            raise ValueError("key material has been discarded")
        return bytes(self._buffer)

    def discard(self) -> None:
        for index in range(len(self._buffer)):
            self._buffer[index] = 0
        self._buffer = bytearray()

    def __repr__(self) -> str:
        return "KeyMaterial(<discarded>)" if self.discarded else "KeyMaterial(<redacted>)"

    __str__ = __repr__


@dataclass
class EphemeralAccount:
    address: str
    key: KeyMaterial = field(repr=False)

    def discard(self) -> None:
        self.key.discard()


class LedgerClient(abc.ABC):
    """Operations the payment session needs from a ledger."""

    network: str = "ledger"

    @abc.abstractmethod
    def create_address(self) -> EphemeralAccount:
        """Generate a fresh, independent keypair."""

    @abc.abstractmethod
    async def get_balance(self, address: str) -> int:
        """Return the confirmed balance of ``address`` in base units."""

    @abc.abstractmethod
    async def transfer(
        self,
        source: EphemeralAccount,
        destination: str,
        amount: int,
    ) -> str:
        """Send ``amount`` base units and wait for confirmation."""

    def validate_address(self, address: str) -> str:
        return normalize_address(address, network=self.network)

    def close(self) -> None:
        return None


class EvmLedgerClient(LedgerClient):
    """
    JSON-RPC client for native coin transfers on an EVM chain.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: int,
        network: str = "ethereum",
        gas_limit: int = 21000,
        max_fee: Optional[int] = None,
        confirmation_timeout: float = 60.0,
        confirmation_poll_seconds: float = 2.0,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.network = network
        self.gas_limit = gas_limit
        self.max_fee = max_fee
        self.confirmation_timeout = confirmation_timeout
        self.confirmation_poll_seconds = confirmation_poll_seconds
        self.session = session or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls,
        config: SessionConfig,
        *,
        session: Optional[requests.Session] = None,
    ) -> "EvmLedgerClient":
        return cls(
            config.rpc_url,
            chain_id=config.chain_id,
            network=config.network,
            gas_limit=config.gas_limit,
            max_fee=config.network_fee_reserve,
            confirmation_timeout=config.confirmation_timeout_seconds,
            session=session,
        )

    def _call(self, method: str, params: List[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.rpc_url, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"{method} request to {self.rpc_url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise NetworkError(
                f"Node responded to {method} with {response.status_code}: {response.text}"
            )
        try:
            payload: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Failed to parse JSON from node for {method}: {response.text}"
            ) from exc

        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise NetworkError(f"{method} failed: {message}")
        if "result" not in payload:
            raise NetworkError(f"{method} returned no result")
        return payload["result"]

    @staticmethod
    def _quantity(value: Any, method: str) -> int:
        try:
            return int(value, 16)
        except (TypeError, ValueError) as exc:
            raise NetworkError(f"{method} returned a malformed quantity: {value!r}") from exc

    def create_address(self) -> EphemeralAccount:
        account = Account.create()
        return EphemeralAccount(address=account.address, key=KeyMaterial(account.key))

    def _get_balance(self, address: str) -> int:
        result = self._call("eth_getBalance", [address, "latest"])
        return self._quantity(result, "eth_getBalance")

    async def get_balance(self, address: str) -> int:
        return await asyncio.to_thread(self._get_balance, address)

    def _submit(self, source: EphemeralAccount, destination: str, amount: int) -> str:
        gas_price = self._quantity(self._call("eth_gasPrice", []), "eth_gasPrice")
        fee = gas_price * self.gas_limit
        if self.max_fee is not None and fee > self.max_fee:
            raise TransferError(
                f"network fee {fee} exceeds the reserved {self.max_fee} base units"
            )
        nonce = self._quantity(
            self._call("eth_getTransactionCount", [source.address, "pending"]),
            "eth_getTransactionCount",
        )
        transaction = {
            "to": to_checksum_address(destination),
            "value": amount,
            "gas": self.gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        signed = Account.from_key(source.key.reveal()).sign_transaction(transaction)
        raw = "0x" + bytes(signed.raw_transaction).hex()
        result = self._call("eth_sendRawTransaction", [raw])
        return "0x" + HexBytes(result).hex().removeprefix("0x")

    def _receipt(self, tx_id: str) -> Optional[Dict[str, Any]]:
        return self._call("eth_getTransactionReceipt", [tx_id])

    async def _confirm(self, tx_id: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout
        while True:
            try:
                receipt = await asyncio.to_thread(self._receipt, tx_id)
            except NetworkError as exc:
                logger.warning("Receipt lookup for %s failed: %s", tx_id, exc)
                receipt = None

            if receipt is not None:
                status = receipt.get("status")
                if status is not None and self._quantity(status, "eth_getTransactionReceipt") == 0:
                    raise TransferError(f"transaction {tx_id} was reverted", tx_id=tx_id)
                return

            if loop.time() >= deadline:
                raise TransferError(
                    f"transaction {tx_id} not confirmed within "
                    f"{self.confirmation_timeout:g}s",
                    tx_id=tx_id,
                )
            await asyncio.sleep(self.confirmation_poll_seconds)

    async def transfer(
        self,
        source: EphemeralAccount,
        destination: str,
        amount: int,
    ) -> str:
        if amount <= 0:
            raise TransferError(f"refusing to transfer non-positive amount {amount}")
        try:
            tx_id = await asyncio.to_thread(self._submit, source, destination, amount)
        except NetworkError as exc:
            raise TransferError(str(exc)) from exc
        except ValueError as exc:
            # signing rejects malformed transactions and discarded keys
            raise TransferError(f"could not sign transaction: {exc}") from exc

        logger.info("Submitted forward transaction %s from %s", tx_id, source.address)
        try:
            await self._confirm(tx_id)
        except NetworkError as exc:
            raise TransferError(str(exc), tx_id=tx_id) from exc
        return tx_id

    def close(self) -> None:
        self.session.close()
