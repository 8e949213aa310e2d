"""
Signed challenges that gate reward payouts.

A wallet claiming a reward first signs a one-off challenge message; the
reward template is only built once that signature checks out against the
wallet's ed25519 key.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Union

import base58
from solders.pubkey import Pubkey
from solders.signature import Signature

from .units import format_address, parse_address

__all__ = [
    "DEFAULT_CHALLENGE_MAX_AGE",
    "RewardChallenge",
    "verify_message_signature",
]

DEFAULT_CHALLENGE_MAX_AGE = 300.0
_SIGNATURE_BYTES = 64


def _decode_signature(signature: Union[str, bytes, Signature]) -> Signature:
    if isinstance(signature, Signature):
        return signature
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        raw = base58.b58decode(signature.strip())
    if len(raw) != _SIGNATURE_BYTES:
        raise ValueError(f"signature must be {_SIGNATURE_BYTES} bytes, got {len(raw)}")
    return Signature.from_bytes(raw)


def verify_message_signature(
    message: Union[str, bytes],
    signature: Union[str, bytes, Signature],
    public_key: Union[str, Pubkey],
) -> bool:
    """
    Check an ed25519 signature over ``message`` made by ``public_key``.

    A malformed signature is treated as a failed check; a malformed public
    key raises :class:`ConfigError`.
    """
    key = parse_address(public_key, "public_key")
    payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
    try:
        decoded = _decode_signature(signature)
    except ValueError as exc:
        logging.warning("Rejecting malformed signature from %s: %s", format_address(key), exc)
        return False
    valid = decoded.verify(key, payload)
    if not valid:
        logging.warning("Signature does not match wallet %s", format_address(key))
    return valid


@dataclass(frozen=True)
class RewardChallenge:
    wallet: str
    claim_id: str
    nonce: str
    timestamp: int

    @classmethod
    def issue(
        cls,
        wallet: Union[str, Pubkey],
        claim_id: Union[str, int],
        *,
        wall_clock: Callable[[], float] = time.time,
    ) -> "RewardChallenge":
        address = parse_address(wallet, "wallet")
        return cls(
            wallet=str(address),
            claim_id=str(claim_id),
            nonce=secrets.token_hex(16),
            timestamp=int(wall_clock()),
        )

    def message(self) -> str:
        return (
            "x402 Reward Claim\n\n"
            f"Wallet: {self.wallet}\n"
            f"Claim ID: {self.claim_id}\n"
            f"Nonce: {self.nonce}\n"
            f"Timestamp: {self.timestamp}\n\n"
            "Sign this message to claim your reward."
        )

    def is_expired(self, now: float, max_age: float = DEFAULT_CHALLENGE_MAX_AGE) -> bool:
        return now - self.timestamp > max_age

    def verify(
        self,
        signature: Union[str, bytes, Signature],
        *,
        max_age: float = DEFAULT_CHALLENGE_MAX_AGE,
        wall_clock: Callable[[], float] = time.time,
    ) -> bool:
        if self.is_expired(wall_clock(), max_age):
            logging.warning(
                "Challenge %s for %s expired", self.nonce, format_address(self.wallet)
            )
            return False
        return verify_message_signature(self.message(), signature, self.wallet)
