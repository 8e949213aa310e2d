"""
Heuristic spam-token screening for holder lookups and payout assets.

No external service is consulted: a token is judged only on the metadata
the caller already has.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

__all__ = [
    "SpamFlag",
    "SpamReport",
    "SpamRisk",
    "TokenProfile",
    "detect_spam_token",
    "detect_spam_tokens",
]

SCAM_KEYWORDS = (
    "airdrop",
    "claim",
    "free",
    "reward",
    "giveaway",
    "bonus",
    "prize",
    "winner",
    "congratulations",
    "lucky",
    "lottery",
    "official",
    "verify",
    "validation",
    "security",
    "support",
    "help",
    "wallet",
    "metamask",
    "trust",
    "coinbase",
)

KNOWN_SYMBOLS = frozenset(
    {"SOL", "USDC", "USDT", "BONK", "JUP", "RAY", "ORCA", "MNGO", "SRM", "STEP", "WIF", "POPCAT", "MEW"}
)

_ALPHANUMERIC = re.compile(r"^[A-Za-z0-9]+$")


class SpamRisk(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SpamFlag(enum.Enum):
    FREEZE_AUTHORITY = "freeze_authority"
    DUST_VALUE = "dust_value"
    MISSING_METADATA = "missing_metadata"
    SCAM_KEYWORDS = "scam_keywords"
    UNUSUAL_DECIMALS = "unusual_decimals"
    ZERO_BALANCE = "zero_balance"
    LONG_SYMBOL = "long_symbol"
    SYMBOL_CHARACTERS = "symbol_characters"


@dataclass(frozen=True)
class TokenProfile:
    mint: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    ui_amount: Optional[float] = None
    usd_value: Optional[float] = None
    freeze_authority: Optional[str] = None


@dataclass(frozen=True)
class SpamReport:
    mint: str
    is_spam: bool
    risk: SpamRisk
    confidence: int
    flags: Tuple[SpamFlag, ...] = ()
    keywords: Tuple[str, ...] = field(default=())


def _collect_flags(token: TokenProfile) -> Tuple[Tuple[SpamFlag, ...], Tuple[str, ...]]:
    flags = []
    keywords: Tuple[str, ...] = ()
    if token.freeze_authority:
        flags.append(SpamFlag.FREEZE_AUTHORITY)
    if token.usd_value is not None and token.usd_value < 0.01:
        flags.append(SpamFlag.DUST_VALUE)
    if not token.name or not token.symbol:
        flags.append(SpamFlag.MISSING_METADATA)
    if token.name:
        lowered = token.name.lower()
        keywords = tuple(word for word in SCAM_KEYWORDS if word in lowered)
        if keywords:
            flags.append(SpamFlag.SCAM_KEYWORDS)
    if token.decimals is not None and token.decimals > 9:
        flags.append(SpamFlag.UNUSUAL_DECIMALS)
    if token.ui_amount is not None and token.ui_amount == 0:
        flags.append(SpamFlag.ZERO_BALANCE)
    if token.symbol and len(token.symbol) > 10:
        flags.append(SpamFlag.LONG_SYMBOL)
    if token.symbol and not _ALPHANUMERIC.match(token.symbol):
        flags.append(SpamFlag.SYMBOL_CHARACTERS)
    return tuple(flags), keywords


def detect_spam_token(token: TokenProfile) -> SpamReport:
    """
    Score ``token`` against the heuristics. Two or more flags mark it as
    spam; a live freeze authority is always critical.
    """
    if token.symbol and token.symbol.upper() in KNOWN_SYMBOLS:
        return SpamReport(mint=token.mint, is_spam=False, risk=SpamRisk.LOW, confidence=0)

    flags, keywords = _collect_flags(token)
    confidence = min(len(flags) * 20, 100)
    if SpamFlag.FREEZE_AUTHORITY in flags:
        risk = SpamRisk.CRITICAL
        confidence = max(confidence, 90)
    elif len(flags) >= 3 or SpamFlag.SCAM_KEYWORDS in flags:
        risk = SpamRisk.HIGH
        confidence = max(confidence, 70)
    elif len(flags) == 2:
        risk = SpamRisk.MEDIUM
        confidence = max(confidence, 50)
    elif len(flags) == 1:
        risk = SpamRisk.LOW
        confidence = max(confidence, 30)
    else:
        risk = SpamRisk.LOW

    report = SpamReport(
        mint=token.mint,
        is_spam=len(flags) >= 2,
        risk=risk,
        confidence=confidence,
        flags=flags,
        keywords=keywords,
    )
    if report.is_spam:
        logging.info(
            "Spam token %s (%s): risk=%s flags=%s",
            token.mint,
            token.symbol,
            risk.value,
            [flag.value for flag in flags],
        )
    return report


def detect_spam_tokens(tokens: Iterable[TokenProfile]) -> Dict[str, SpamReport]:
    reports = {token.mint: detect_spam_token(token) for token in tokens}
    flagged = sum(1 for report in reports.values() if report.is_spam)
    logging.info("Screened %d token(s), %d flagged as spam", len(reports), flagged)
    return reports
