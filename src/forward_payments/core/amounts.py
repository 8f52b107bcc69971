"""
Amount and address helpers shared by configuration and the session.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from eth_utils import is_hex_address, to_checksum_address

from .errors import ValidationError

__all__ = [
    "AmountLike",
    "format_amount",
    "from_base_units",
    "is_valid_address",
    "normalize_address",
    "parse_amount",
    "shorten_address",
    "to_base_units",
]

AmountLike = Union[Decimal, str, int, float]


def _as_decimal(value: AmountLike) -> Decimal:
    if isinstance(value, float):
        # str() keeps 0.01 as 0.01 instead of its binary expansion
        value = str(value)
    if isinstance(value, str):
        value = value.strip()
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidOperation(f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise InvalidOperation(f"not a finite number: {value!r}")
    return result


def to_base_units(amount: Decimal, decimals: int) -> int:
    """
    Convert a coin amount to integer base units.

    Raises :class:`ValueError` when ``amount`` has more precision than the
    ledger can represent.
    """
    scaled = amount * (Decimal(10) ** decimals)
    try:
        integral = scaled.to_integral_exact()
    except InvalidOperation as exc:
        raise ValueError(
            f"Amount {amount} cannot be represented with {decimals} decimals"
        ) from exc
    if integral != scaled:
        raise ValueError(
            f"Amount {amount} cannot be represented with {decimals} decimals"
        )
    return int(integral)


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value).scaleb(-decimals)


def format_amount(value: Decimal, places: int = 6) -> str:
    quantum = Decimal(1).scaleb(-places)
    return str(value.quantize(quantum))


def parse_amount(
    raw: AmountLike,
    *,
    max_amount: Decimal,
    decimals: int,
    symbol: str = "ETH",
) -> Decimal:
    """
    Validate a user supplied target amount.

    Returns the amount as a :class:`Decimal` in whole coins. Every rejection is
    a :class:`ValidationError` scoped to the ``amount`` field.
    """
    try:
        amount = _as_decimal(raw)
    except InvalidOperation:
        raise ValidationError(
            "amount", "invalid_amount", "Amount must be a valid number"
        ) from None

    if amount <= 0:
        raise ValidationError(
            "amount", "invalid_amount", "Amount must be greater than 0"
        )
    if amount > max_amount:
        raise ValidationError(
            "amount",
            "invalid_amount",
            f"Amount must be less than or equal to {max_amount} {symbol}",
        )
    try:
        to_base_units(amount, decimals)
    except ValueError as exc:
        raise ValidationError("amount", "invalid_amount", str(exc)) from None
    return amount


def is_valid_address(value: str) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    if not candidate.startswith("0x"):
        candidate = "0x" + candidate
    return is_hex_address(candidate)


def normalize_address(value: str, *, network: str = "ethereum") -> str:
    """Return ``value`` in checksum form or raise a field-scoped error."""
    if not is_valid_address(value):
        raise ValidationError(
            "destination_address",
            "invalid_address",
            f"Invalid {network} address",
        )
    candidate = value.strip()
    if not candidate.startswith("0x"):
        candidate = "0x" + candidate
    return to_checksum_address(candidate)


def shorten_address(value: str, keep: int = 4) -> str:
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"
