"""
Configuration objects and helpers for payment sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from .amounts import AmountLike, is_valid_address, normalize_address, to_base_units
from .environment import build_environment
from .errors import ConfigError

__all__ = [
    "ConfigError",
    "SessionConfig",
    "SessionParameters",
    "load_session_config",
]

_PARAMETER_TO_ENV_KEY = {
    "rpc_url": "FWD_RPC_URL",
    "chain_id": "FWD_CHAIN_ID",
    "network": "FWD_NETWORK",
    "currency_symbol": "FWD_CURRENCY_SYMBOL",
    "token_decimals": "FWD_TOKEN_DECIMALS",
    "payment_window_seconds": "FWD_PAYMENT_WINDOW_SECONDS",
    "poll_interval_ms": "FWD_POLL_INTERVAL_MS",
    "network_fee_reserve": "FWD_NETWORK_FEE_RESERVE",
    "max_amount": "FWD_MAX_AMOUNT",
    "gas_limit": "FWD_GAS_LIMIT",
    "confirmation_timeout_seconds": "FWD_CONFIRMATION_TIMEOUT_SECONDS",
    "default_destination": "FWD_DESTINATION_ADDRESS",
    "default_amount": "FWD_DEFAULT_AMOUNT",
}

_T = TypeVar("_T", int, Decimal)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class SessionParameters:
    """
    Explicit parameter bundle for constructing :class:`SessionConfig`.

    Any field left as ``None`` falls back to the environment or the default.
    """

    rpc_url: Optional[str] = None
    chain_id: Optional[int | str] = None
    network: Optional[str] = None
    currency_symbol: Optional[str] = None
    token_decimals: Optional[int | str] = None
    payment_window_seconds: Optional[int | str] = None
    poll_interval_ms: Optional[int | str] = None
    network_fee_reserve: Optional[int | str] = None
    max_amount: Optional[AmountLike] = None
    gas_limit: Optional[int | str] = None
    confirmation_timeout_seconds: Optional[int | str] = None
    default_destination: Optional[str] = None
    default_amount: Optional[AmountLike] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            overrides[env_key] = _stringify(value)
        return overrides


def _parse(
    values: Mapping[str, str],
    key: str,
    default: str,
    convert: Callable[[str], _T],
) -> _T:
    raw = values.get(key) or default
    try:
        return convert(raw.strip())
    except (ValueError, InvalidOperation) as exc:
        raise ConfigError(f"{key} has an invalid value: '{raw}'") from exc


def _positive(key: str, value: _T) -> _T:
    if value <= 0:
        raise ConfigError(f"{key} must be greater than zero")
    return value


@dataclass(frozen=True)
class SessionConfig:
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 1
    network: str = "ethereum"
    currency_symbol: str = "ETH"
    token_decimals: int = 18
    payment_window_seconds: int = 300
    poll_interval_ms: int = 5000
    network_fee_reserve: int = 5000
    max_amount: Decimal = Decimal("100")
    gas_limit: int = 21000
    confirmation_timeout_seconds: int = 60
    default_destination: Optional[str] = None
    default_amount: Decimal = Decimal("0.01")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    def to_base_units(self, amount: Decimal) -> int:
        return to_base_units(amount, self.token_decimals)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "SessionConfig":
        rpc_url = (values.get("FWD_RPC_URL") or cls.rpc_url).rstrip("/")
        if not rpc_url.startswith(("http://", "https://")):
            raise ConfigError("FWD_RPC_URL must be an http(s) URL")

        chain_id = _positive(
            "FWD_CHAIN_ID", _parse(values, "FWD_CHAIN_ID", "1", int)
        )
        token_decimals = _parse(values, "FWD_TOKEN_DECIMALS", "18", int)
        if not 0 <= token_decimals <= 36:
            raise ConfigError("FWD_TOKEN_DECIMALS must be between 0 and 36")

        window = _positive(
            "FWD_PAYMENT_WINDOW_SECONDS",
            _parse(values, "FWD_PAYMENT_WINDOW_SECONDS", "300", int),
        )
        poll_interval_ms = _positive(
            "FWD_POLL_INTERVAL_MS",
            _parse(values, "FWD_POLL_INTERVAL_MS", "5000", int),
        )
        fee_reserve = _parse(values, "FWD_NETWORK_FEE_RESERVE", "5000", int)
        if fee_reserve < 0:
            raise ConfigError("FWD_NETWORK_FEE_RESERVE must not be negative")
        max_amount = _positive(
            "FWD_MAX_AMOUNT", _parse(values, "FWD_MAX_AMOUNT", "100", Decimal)
        )
        gas_limit = _positive(
            "FWD_GAS_LIMIT", _parse(values, "FWD_GAS_LIMIT", "21000", int)
        )
        confirmation_timeout = _positive(
            "FWD_CONFIRMATION_TIMEOUT_SECONDS",
            _parse(values, "FWD_CONFIRMATION_TIMEOUT_SECONDS", "60", int),
        )

        network = values.get("FWD_NETWORK") or cls.network

        default_destination = values.get("FWD_DESTINATION_ADDRESS") or None
        if default_destination is not None:
            if not is_valid_address(default_destination):
                raise ConfigError("FWD_DESTINATION_ADDRESS is not a valid address")
            default_destination = normalize_address(default_destination)

        default_amount = _parse(values, "FWD_DEFAULT_AMOUNT", "0.01", Decimal)

        return cls(
            rpc_url=rpc_url,
            chain_id=chain_id,
            network=network,
            currency_symbol=values.get("FWD_CURRENCY_SYMBOL") or cls.currency_symbol,
            token_decimals=token_decimals,
            payment_window_seconds=window,
            poll_interval_ms=poll_interval_ms,
            network_fee_reserve=fee_reserve,
            max_amount=max_amount,
            gas_limit=gas_limit,
            confirmation_timeout_seconds=confirmation_timeout,
            default_destination=default_destination,
            default_amount=default_amount,
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[SessionParameters] = None,
    ) -> "SessionConfig":
        merged_overrides = dict(overrides or {})
        if parameters is not None:
            merged_overrides.update(parameters.as_overrides())

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.variables)


def load_session_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[SessionParameters] = None,
    **fields: Any,
) -> SessionConfig:
    """
    Convenience wrapper around :meth:`SessionConfig.from_env`.

    Keyword arguments named after :class:`SessionParameters` fields are folded
    into ``parameters`` and win over it.
    """
    unknown = set(fields) - set(_PARAMETER_TO_ENV_KEY)
    if unknown:
        raise TypeError(f"Unknown session parameter(s): {', '.join(sorted(unknown))}")

    if fields:
        merged: Dict[str, Any] = {}
        if parameters is not None:
            merged = {name: getattr(parameters, name) for name in _PARAMETER_TO_ENV_KEY}
        merged.update({k: v for k, v in fields.items() if v is not None})
        parameters = SessionParameters(**merged)

    return SessionConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
    )
