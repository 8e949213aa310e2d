"""
Value objects exchanged between the settlement components.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from solders.pubkey import Pubkey

from .errors import ConfigError
from .units import NATIVE_ASSET, parse_address

__all__ = [
    "PaymentReference",
    "TransferExpectation",
    "VerificationResult",
    "parse_asset",
]


@dataclass(frozen=True)
class PaymentReference:
    """
    Single-use correlation key, attached to a transaction as a read-only
    account so the payment can be located by address.
    """

    pubkey: Pubkey

    @property
    def address(self) -> str:
        return str(self.pubkey)

    def __str__(self) -> str:
        return self.address

    @classmethod
    def from_string(cls, value: str) -> "PaymentReference":
        return cls(parse_address(value, "reference"))


def parse_asset(value: Union[str, Pubkey, None]) -> Optional[Pubkey]:
    """``None`` (or ``"SOL"``) designates the native asset, anything else is a mint."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().upper() == NATIVE_ASSET:
        return None
    return parse_address(value, "asset")


@dataclass(frozen=True)
class TransferExpectation:
    recipient: Pubkey
    amount: int
    asset: Optional[Pubkey]
    reference: PaymentReference

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ConfigError(
                f"Expected amount must be an integer in atomic units, got {self.amount!r}"
            )
        if self.amount <= 0:
            raise ConfigError("Expected amount must be greater than zero")

    @property
    def is_native(self) -> bool:
        return self.asset is None

    @property
    def asset_label(self) -> str:
        return NATIVE_ASSET if self.asset is None else str(self.asset)

    @classmethod
    def create(
        cls,
        *,
        recipient: Union[str, Pubkey],
        amount: int,
        asset: Union[str, Pubkey, None],
        reference: Union[str, PaymentReference],
    ) -> "TransferExpectation":
        if not isinstance(reference, PaymentReference):
            reference = PaymentReference.from_string(reference)
        return cls(
            recipient=parse_address(recipient, "recipient"),
            amount=amount,
            asset=parse_asset(asset),
            reference=reference,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "recipient": str(self.recipient),
            "amount": self.amount,
            "asset": self.asset_label,
            "reference": self.reference.address,
        }


@dataclass(frozen=True)
class VerificationResult:
    signature: str
    validated_amount: int
    timestamp: int
    reference: str
    slot: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "validatedAmount": self.validated_amount,
            "timestamp": self.timestamp,
            "reference": self.reference,
            "slot": self.slot,
        }
