"""
Amount, mint and address helpers shared by the settlement components.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

import base58
from solders.pubkey import Pubkey

from .errors import ConfigError

__all__ = [
    "NATIVE_ASSET",
    "SOL_DECIMALS",
    "USDC_DECIMALS",
    "USDC_MINTS",
    "explorer_url",
    "format_address",
    "from_atomic",
    "parse_address",
    "to_atomic",
    "usdc_mint_for_network",
]

NATIVE_ASSET = "SOL"

SOL_DECIMALS = 9
USDC_DECIMALS = 6

USDC_MINTS = {
    "mainnet-beta": Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"),
    "devnet": Pubkey.from_string("4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"),
}

Amount = Union[Decimal, str, int]


def parse_address(raw: Union[str, Pubkey], field_name: str = "address") -> Pubkey:
    if isinstance(raw, Pubkey):
        return raw
    value = (raw or "").strip()
    if not value:
        raise ConfigError(f"{field_name} must not be empty")
    try:
        raw_bytes = base58.b58decode(value)
    except ValueError as exc:
        raise ConfigError(f"{field_name} is not a valid base58 address: {value!r}") from exc
    if len(raw_bytes) != 32:
        raise ConfigError(f"{field_name} must decode to 32 bytes, got {len(raw_bytes)}")
    return Pubkey(raw_bytes)


def usdc_mint_for_network(network: str) -> Pubkey:
    try:
        return USDC_MINTS[network]
    except KeyError as exc:
        raise ConfigError(f"Unknown network '{network}'") from exc


def to_atomic(amount: Amount, decimals: int) -> int:
    """
    Convert a display amount to integer atomic units.

    Floats are refused outright; amounts with more precision than the asset
    supports raise :class:`ConfigError` rather than being rounded.
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise ConfigError("Amounts must be Decimal, str or int, never float")
    try:
        value = Decimal(amount)
    except InvalidOperation as exc:
        raise ConfigError(f"Amount must be a valid decimal number, got '{amount}'") from exc

    scaled = value * (Decimal(10) ** decimals)
    try:
        integral = scaled.to_integral_exact()
    except InvalidOperation as exc:
        raise ConfigError(
            f"Amount {amount} cannot be represented with {decimals} decimals"
        ) from exc
    if integral != scaled:
        raise ConfigError(f"Amount {amount} cannot be represented with {decimals} decimals")
    as_int = int(integral)
    if as_int < 0:
        raise ConfigError("Amount must not be negative")
    return as_int


def from_atomic(atomic: int, decimals: int) -> Decimal:
    return Decimal(atomic).scaleb(-decimals)


def explorer_url(signature: str, network: str = "mainnet-beta") -> str:
    suffix = "" if network == "mainnet-beta" else f"?cluster={network}"
    return f"https://solscan.io/tx/{signature}{suffix}"


def format_address(address: Union[str, Pubkey], chars: int = 4) -> str:
    text = str(address)
    if len(text) <= chars * 2:
        return text
    return f"{text[:chars]}...{text[-chars:]}"
