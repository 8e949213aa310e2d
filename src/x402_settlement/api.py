"""
Public, high-level helpers for verifying payments and quoting prices.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Mapping, Optional, Union

import requests
from solders.pubkey import Pubkey

from .core.config import ConfigError, SettlementConfig, load_settlement_config
from .core.context import SettlementContext
from .core.models import PaymentReference, TransferExpectation, VerificationResult
from .core.tiers import DiscountQuote, Tier, quote, tier_for
from .core.units import to_atomic

__all__ = [
    "create_settlement_context",
    "quote_price",
    "verify_payment",
]


def create_settlement_context(
    *,
    config: Optional[SettlementConfig] = None,
    session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> SettlementContext:
    """
    Construct a :class:`SettlementContext`.

    Callers can either supply a ready-made :class:`SettlementConfig` or let
    the helper assemble one from environment data.
    """
    if config is not None:
        if overrides or base is not None:
            raise ValueError(
                "Provide either a pre-built SettlementConfig or environment data, not both."
            )
        cfg = config
    else:
        cfg = load_settlement_config(env_file=env_file, overrides=overrides, base=base)
    return SettlementContext(cfg, session=session)


def verify_payment(
    *,
    recipient: Union[str, Pubkey],
    amount: int,
    reference: Union[str, PaymentReference],
    asset: Union[str, Pubkey, None] = None,
    timeout: Optional[float] = None,
    context: Optional[SettlementContext] = None,
    config: Optional[SettlementConfig] = None,
    env_file: Optional[str] = ".env",
) -> VerificationResult:
    """
    Blocking convenience wrapper around :meth:`PaymentVerifier.verify`.

    ``asset`` defaults to the configured asset; pass ``"SOL"`` for native
    transfers. A context created here is closed before returning.
    """
    owned = context is None
    ctx = context or create_settlement_context(config=config, env_file=env_file)
    try:
        expectation = TransferExpectation.create(
            recipient=recipient,
            amount=amount,
            asset=asset if asset is not None else ctx.config.asset_label,
            reference=reference,
        )
        return asyncio.run(ctx.verifier().verify(expectation, timeout=timeout))
    finally:
        if owned:
            ctx.close()


def quote_price(
    base_price: Union[Decimal, str, int],
    *,
    balance: Union[int, Decimal, None] = None,
    tier: Optional[Tier] = None,
    decimals: int = 6,
) -> DiscountQuote:
    """
    Quote a human-denominated price (e.g. ``"0.05"`` USDC) for a holder.

    Exactly one of ``balance`` (whole tokens) or ``tier`` must be given. The
    quote itself is computed in atomic units.
    """
    if (balance is None) == (tier is None):
        raise ConfigError("Provide exactly one of balance or tier")
    resolved = tier if tier is not None else tier_for(balance)
    return quote(to_atomic(base_price, decimals), resolved)
