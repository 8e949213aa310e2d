"""
Minimal script that uses the public API to verify a single payment.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, Tuple

from x402_settlement import (
    ConfigError,
    SettlementError,
    create_settlement_context,
    load_settlement_config,
    verify_payment,
)


def _override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _build_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    return {key: value for key, value in pairs}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify an x402 payment on Solana")
    parser.add_argument("--env-file", default=".env", help="Path to the .env file")
    parser.add_argument(
        "--set",
        action="append",
        type=_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument("--log-level", default="INFO", help="Python logging level (default: INFO)")
    parser.add_argument("--recipient", required=True, help="Wallet expected to receive the payment")
    parser.add_argument("--amount", required=True, type=int, help="Expected amount in atomic units")
    parser.add_argument(
        "--reference",
        help="Reference to wait for; when omitted a fresh one is printed and the script exits",
    )
    parser.add_argument("--timeout", type=float, help="Seconds to wait for the payment")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        config = load_settlement_config(
            env_file=args.env_file,
            overrides=_build_overrides(args.set or ()),
        )
    except (KeyError, ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    with create_settlement_context(config=config) as context:
        if args.reference is None:
            reference = context.tracker.create()
            logging.info("Ask the payer to include reference %s", reference)
            return 0

        try:
            result = verify_payment(
                recipient=args.recipient,
                amount=args.amount,
                reference=args.reference,
                timeout=args.timeout,
                context=context,
            )
        except ConfigError as exc:
            logging.error("Invalid payment request: %s", exc)
            return 1
        except SettlementError as exc:
            logging.error("Payment not verified: %s", exc.context())
            return 1

    logging.info(
        "Payment verified: %s paid %d atomic units at %d",
        result.signature,
        result.validated_amount,
        result.timestamp,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
