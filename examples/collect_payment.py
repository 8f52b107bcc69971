"""
Minimal script that uses the public API to collect and forward one payment.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from forward_payments import (
    ConfigError,
    SessionSnapshot,
    SessionState,
    ValidationError,
    collect_payment,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect a payment using the SDK API")
    parser.add_argument("destination", help="Address that receives the forwarded funds")
    parser.add_argument("amount", help="Amount to collect in whole coins")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing FWD_* settings",
    )
    parser.add_argument(
        "--rpc-url",
        help="JSON-RPC endpoint of the node (overrides FWD_RPC_URL)",
    )
    parser.add_argument(
        "--window",
        type=int,
        help="Payment window in seconds (overrides FWD_PAYMENT_WINDOW_SECONDS)",
    )
    return parser.parse_args()


def _print(snapshot: SessionSnapshot) -> None:
    if snapshot.state is SessionState.WAITING and snapshot.remaining_seconds % 15:
        return
    print(
        f"[{snapshot.remaining_display}] {snapshot.status_text}: "
        f"{snapshot.observed_balance} / {snapshot.target_amount} "
        f"at {snapshot.ephemeral_address}"
    )


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    try:
        final = asyncio.run(
            collect_payment(
                args.destination,
                args.amount,
                observer=_print,
                env_file=args.env_file,
                rpc_url=args.rpc_url,
                payment_window_seconds=args.window,
            )
        )
    except ValidationError as exc:
        print(f"{exc.field}: {exc.message}", file=sys.stderr)
        return 2
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    if final.state is SessionState.FORWARDED:
        print(f"Forwarded {final.forwarded_amount} in {final.forward_tx_id}")
        return 0
    print("Payment window expired", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
