"""
Holder tiers and discount quotes.

``tier_for`` and ``quote`` are pure; reading the on-chain holding is the job
of :class:`HolderLookup`, which goes through the retry policy.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from .errors import ConfigError
from .retry import RetryPolicy, Sleep
from .units import format_address, from_atomic, parse_address

__all__ = [
    "DiscountQuote",
    "HolderLookup",
    "TIER_THRESHOLDS",
    "Tier",
    "TierBenefits",
    "TierInfo",
    "benefits_for",
    "quote",
    "tier_for",
    "tier_for_atomic",
]


class Tier(enum.Enum):
    NONE = "NONE"
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    DIAMOND = "DIAMOND"


# Whole tokens, highest first.
TIER_THRESHOLDS = (
    (Tier.DIAMOND, 100_000),
    (Tier.GOLD, 50_000),
    (Tier.SILVER, 10_000),
    (Tier.BRONZE, 1_000),
)


@dataclass(frozen=True)
class TierBenefits:
    discount_percent: int
    priority_execution: bool
    custom_branding: bool


_BENEFITS: Dict[Tier, TierBenefits] = {
    Tier.NONE: TierBenefits(discount_percent=0, priority_execution=False, custom_branding=False),
    Tier.BRONZE: TierBenefits(discount_percent=10, priority_execution=False, custom_branding=False),
    Tier.SILVER: TierBenefits(discount_percent=20, priority_execution=False, custom_branding=True),
    Tier.GOLD: TierBenefits(discount_percent=30, priority_execution=True, custom_branding=True),
    Tier.DIAMOND: TierBenefits(discount_percent=50, priority_execution=True, custom_branding=True),
}

if set(_BENEFITS) != set(Tier):  # pragma: no cover - import-time table check
    raise RuntimeError("Every tier needs a benefits entry")


def benefits_for(tier: Tier) -> TierBenefits:
    return _BENEFITS[tier]


def tier_for(balance: Union[int, Decimal]) -> Tier:
    """Map a balance expressed in whole tokens to its tier."""
    if balance < 0:
        raise ConfigError(f"Balance must not be negative, got {balance}")
    for tier, threshold in TIER_THRESHOLDS:
        if balance >= threshold:
            return tier
    return Tier.NONE


def tier_for_atomic(raw_balance: int, decimals: int) -> Tier:
    """Same as :func:`tier_for` but compares raw units against scaled thresholds."""
    if raw_balance < 0:
        raise ConfigError(f"Balance must not be negative, got {raw_balance}")
    scale = 10 ** decimals
    for tier, threshold in TIER_THRESHOLDS:
        if raw_balance >= threshold * scale:
            return tier
    return Tier.NONE


@dataclass(frozen=True)
class DiscountQuote:
    base_price: int
    tier: Tier
    discount_percent: int
    final_price: int
    savings: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "basePrice": self.base_price,
            "tier": self.tier.value,
            "discountPercent": self.discount_percent,
            "finalPrice": self.final_price,
            "savings": self.savings,
        }


def quote(base_price: int, tier: Tier) -> DiscountQuote:
    """
    Apply the tier discount to ``base_price`` (integer atomic units).

    Savings round down, so the holder never receives more discount than the
    table grants and ``final_price + savings == base_price`` holds exactly.
    """
    if isinstance(base_price, bool) or not isinstance(base_price, int):
        raise ConfigError(f"Base price must be an integer in atomic units, got {base_price!r}")
    if base_price < 0:
        raise ConfigError("Base price must not be negative")
    percent = benefits_for(tier).discount_percent
    savings = base_price * percent // 100
    return DiscountQuote(
        base_price=base_price,
        tier=tier,
        discount_percent=percent,
        final_price=base_price - savings,
        savings=savings,
    )


@dataclass(frozen=True)
class TierInfo:
    wallet: str
    raw_balance: int
    decimals: int
    tier: Tier

    @property
    def balance(self) -> Decimal:
        return from_atomic(self.raw_balance, self.decimals)

    @property
    def benefits(self) -> TierBenefits:
        return benefits_for(self.tier)


class HolderLookup:
    def __init__(
        self,
        rpc,
        *,
        mint: Pubkey,
        decimals: int = 9,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.mint = mint
        self.decimals = decimals
        self.retry = retry or RetryPolicy()
        self.sleep = sleep

    async def fetch(self, wallet: Union[str, Pubkey]) -> TierInfo:
        """
        Read the wallet's holding of the tier token. A wallet without a token
        account holds nothing; RPC failures propagate.
        """
        owner = parse_address(wallet, "wallet")
        token_account = get_associated_token_address(owner, self.mint)
        raw = await self.retry.run(
            lambda: self.rpc.get_token_balance(str(token_account)),
            "getAccountInfo",
            sleep=self.sleep,
        )
        raw_balance = raw or 0
        tier = tier_for_atomic(raw_balance, self.decimals)
        logging.info(
            "Holder %s has %s tokens (tier %s)",
            format_address(owner),
            from_atomic(raw_balance, self.decimals),
            tier.value,
        )
        return TierInfo(
            wallet=str(owner),
            raw_balance=raw_balance,
            decimals=self.decimals,
            tier=tier,
        )
