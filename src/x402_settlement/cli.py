"""
Command-line interface for exercising the settlement APIs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Iterable, Sequence, Tuple

from .api import create_settlement_context, quote_price
from .core.config import ConfigError, load_settlement_config
from .core.errors import SettlementError
from .core.models import PaymentReference, TransferExpectation
from .core.reference import ReferenceTracker
from .core.tiers import Tier, benefits_for, tier_for
from .core.units import explorer_url, from_atomic, parse_address


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


def _emit(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-settlement",
        description="Verify Solana payments, quote holder discounts and build transfer templates",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings (default: .env)",
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
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("reference", help="Generate a fresh payment reference")

    verify = commands.add_parser("verify", help="Wait for and verify a payment")
    verify.add_argument("--recipient", required=True, help="Wallet that should receive the payment")
    verify.add_argument("--amount", required=True, type=int, help="Expected amount in atomic units")
    verify.add_argument("--reference", required=True, help="Payment reference address")
    verify.add_argument("--asset", help="Mint address, or SOL (default: configured asset)")
    verify.add_argument("--timeout", type=float, help="Seconds to wait (default: X402_VERIFY_TIMEOUT_SECONDS)")

    tier = commands.add_parser("tier", help="Show the holder tier for a balance or wallet")
    source = tier.add_mutually_exclusive_group(required=True)
    source.add_argument("--balance", type=int, help="Balance in whole tokens")
    source.add_argument("--wallet", help="Look up the wallet's on-chain holding")

    quote = commands.add_parser("quote", help="Quote a discounted price")
    quote.add_argument("--price", required=True, help="Base price, e.g. 0.05")
    quote.add_argument("--decimals", type=int, default=6, help="Price asset decimals (default: 6)")
    quote_source = quote.add_mutually_exclusive_group(required=True)
    quote_source.add_argument("--balance", type=int, help="Holder balance in whole tokens")
    quote_source.add_argument("--tier", choices=[t.value for t in Tier], help="Holder tier")

    build = commands.add_parser("build-payment", help="Build an unsigned payment template")
    build.add_argument("--sender", required=True, help="Paying wallet")
    build.add_argument("--recipient", required=True, help="Receiving wallet")
    build.add_argument("--amount", required=True, type=int, help="Amount in atomic units")
    build.add_argument("--reference", help="Reference to embed (default: a fresh one)")
    build.add_argument("--mint", help="Token mint to transfer (default: configured asset)")
    build.add_argument("--decimals", type=int, help="Decimals of --mint (default: read from the ledger)")
    build.add_argument("--native", action="store_true", help="Transfer SOL instead of the configured token")
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    if args.command == "reference":
        reference = ReferenceTracker().create()
        _emit({"reference": reference.address})
        return 0

    if args.command == "quote":
        try:
            result = quote_price(
                args.price,
                balance=args.balance,
                tier=Tier(args.tier) if args.tier else None,
                decimals=args.decimals,
            )
        except ConfigError as exc:
            logging.error("Invalid quote request: %s", exc)
            return 1
        payload = result.as_dict()
        payload["finalPriceDisplay"] = str(from_atomic(result.final_price, args.decimals))
        payload["savingsDisplay"] = str(from_atomic(result.savings, args.decimals))
        _emit(payload)
        return 0

    if args.command == "tier" and args.balance is not None:
        try:
            resolved = tier_for(args.balance)
        except ConfigError as exc:
            logging.error("Invalid balance: %s", exc)
            return 1
        benefits = benefits_for(resolved)
        _emit({"balance": args.balance, "tier": resolved.value, "benefits": asdict(benefits)})
        return 0

    try:
        config = load_settlement_config(env_file=args.env_file, overrides=overrides)
    except (KeyError, ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    with create_settlement_context(config=config) as context:
        try:
            if args.command == "verify":
                return _verify(context, args)
            if args.command == "tier":
                return _tier(context, args)
            return _build_payment(context, args)
        except ConfigError as exc:
            logging.error("Invalid request: %s", exc)
            return 1
        except SettlementError as exc:
            logging.error("%s: %s", type(exc).__name__, exc)
            _emit(exc.context())
            return 1


def _verify(context, args: argparse.Namespace) -> int:
    expectation = TransferExpectation.create(
        recipient=args.recipient,
        amount=args.amount,
        asset=args.asset if args.asset else context.config.asset_label,
        reference=args.reference,
    )
    result = asyncio.run(context.verifier().verify(expectation, timeout=args.timeout))
    logging.info(
        "Payment verified: %s",
        explorer_url(result.signature, context.config.network),
    )
    _emit(result.as_dict())
    return 0


def _tier(context, args: argparse.Namespace) -> int:
    info = asyncio.run(context.holders().fetch(args.wallet))
    _emit(
        {
            "wallet": info.wallet,
            "balance": str(info.balance),
            "tier": info.tier.value,
            "benefits": asdict(info.benefits),
        }
    )
    return 0


def _build_payment(context, args: argparse.Namespace) -> int:
    reference = (
        PaymentReference.from_string(args.reference)
        if args.reference
        else context.tracker.create()
    )
    template = asyncio.run(
        context.builder().build_payment(
            sender=parse_address(args.sender, "sender"),
            recipient=parse_address(args.recipient, "recipient"),
            amount=args.amount,
            reference=reference,
            native=args.native,
            mint=parse_address(args.mint, "mint") if args.mint else None,
            decimals=args.decimals,
        )
    )
    _emit(
        {
            "transaction": template.serialize(),
            "feePayer": str(template.fee_payer),
            "reference": template.reference,
            "blockhash": template.blockhash,
            "lastValidBlockHeight": template.last_valid_block_height,
            "instructions": template.labels,
        }
    )
    return 0


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
