"""
Command-line interface that runs one forwarding payment session.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Iterable, Optional, Sequence, Tuple

import requests

from .api import create_payment_session
from .core.config import ConfigError, SessionConfig, load_session_config
from .core.errors import SessionStateError
from .core.session import PaymentSession, SessionState
from .presenter import JsonPresenter, LoggingPresenter, SessionPresenter

EXIT_FORWARDED = 0
EXIT_EXPIRED = 1
EXIT_INVALID = 2


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forward-payments",
        description=(
            "Collect a payment at a single-use address and forward it to a "
            "destination address"
        ),
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing FWD_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument(
        "--destination",
        help="Address that receives the forwarded funds (default: FWD_DESTINATION_ADDRESS)",
    )
    parser.add_argument(
        "--amount",
        help="Amount to collect in whole coins (default: FWD_DEFAULT_AMOUNT)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print one JSON snapshot per session update instead of log lines",
    )
    return parser


def _presenter(session: PaymentSession, config: SessionConfig, as_json: bool) -> SessionPresenter:
    if as_json:
        return JsonPresenter(session)
    return LoggingPresenter(session, symbol=config.currency_symbol)


async def _run_session(
    session: PaymentSession,
    presenter: SessionPresenter,
    destination: str,
    amount: str,
) -> int:
    if not presenter.start(destination, amount):
        return EXIT_INVALID
    try:
        final = await session.wait_until_settled()
    except SessionStateError as exc:
        logging.error("Session ended early: %s", exc)
        return EXIT_EXPIRED
    finally:
        session.close()
        presenter.detach()
    return EXIT_FORWARDED if final.state is SessionState.FORWARDED else EXIT_EXPIRED


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    try:
        config = load_session_config(env_file=args.env_file, overrides=overrides)
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return EXIT_INVALID

    if config.network_fee_reserve < config.gas_limit:
        logging.warning(
            "FWD_NETWORK_FEE_RESERVE=%s is below FWD_GAS_LIMIT=%s; no forward can pay "
            "its network fee and received funds will be stranded",
            config.network_fee_reserve,
            config.gas_limit,
        )

    destination: Optional[str] = args.destination or config.default_destination
    if not destination:
        logging.error("No destination address given (use --destination or FWD_DESTINATION_ADDRESS)")
        return EXIT_INVALID
    amount = args.amount if args.amount is not None else str(config.default_amount)

    return asyncio.run(_main(config, destination, amount, args.json))


async def _main(config: SessionConfig, destination: str, amount: str, as_json: bool) -> int:
    session = create_payment_session(config=config, http_session=requests.Session())
    presenter = _presenter(session, config, as_json)
    try:
        return await _run_session(session, presenter, destination, amount)
    finally:
        session.ledger.close()


def main() -> None:
    raise SystemExit(run_cli())
