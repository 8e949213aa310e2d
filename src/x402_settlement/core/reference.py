"""
Creation and single-use bookkeeping for payment references.
"""

from __future__ import annotations

import logging
import secrets
from typing import Dict, Optional

from solders.pubkey import Pubkey

from .errors import ConfigError
from .models import PaymentReference, TransferExpectation, VerificationResult

__all__ = ["ReferenceTracker"]

_REFERENCE_BYTES = 32


class ReferenceTracker:
    """
    Hands out fresh references and remembers which ones were matched.

    Persisting the reference-to-order mapping is the caller's job; the
    tracker only guarantees that a matched reference keeps answering with
    the same result and is never bound to a different expectation.
    """

    def __init__(self) -> None:
        self._results: Dict[str, VerificationResult] = {}
        self._expectations: Dict[str, TransferExpectation] = {}

    def create(self, *, seed: Optional[bytes] = None) -> PaymentReference:
        raw = seed if seed is not None else secrets.token_bytes(_REFERENCE_BYTES)
        if len(raw) != _REFERENCE_BYTES:
            raise ConfigError(f"Reference seed must be {_REFERENCE_BYTES} bytes")
        return PaymentReference(Pubkey(raw))

    def register(self, expectation: TransferExpectation) -> None:
        key = expectation.reference.address
        existing = self._expectations.get(key)
        if existing is not None and existing != expectation:
            if key in self._results:
                raise ConfigError(
                    f"Reference {key} was already matched and cannot be reused"
                )
            logging.warning("Replacing pending expectation for reference %s", key)
        self._expectations[key] = expectation

    def cached_result(self, expectation: TransferExpectation) -> Optional[VerificationResult]:
        """
        The stored result when ``expectation`` is the one that matched its
        reference. A different expectation on a matched reference raises
        :class:`ConfigError` instead of inheriting that result.
        """
        key = expectation.reference.address
        result = self._results.get(key)
        if result is None:
            return None
        if self._expectations.get(key) != expectation:
            raise ConfigError(f"Reference {key} was already matched and cannot be reused")
        return result

    def result_for(self, reference: PaymentReference) -> Optional[VerificationResult]:
        return self._results.get(reference.address)

    def is_consumed(self, reference: PaymentReference) -> bool:
        return reference.address in self._results

    def consume(
        self,
        expectation: TransferExpectation,
        result: VerificationResult,
    ) -> VerificationResult:
        key = expectation.reference.address
        existing = self._results.get(key)
        if existing is not None:
            if self._expectations.get(key) != expectation:
                raise ConfigError(f"Reference {key} was already matched and cannot be reused")
            return existing
        self._expectations[key] = expectation
        self._results[key] = result
        logging.info("Reference %s matched by %s", key, result.signature)
        return result

    def forget(self, reference: PaymentReference) -> None:
        """Drop a pending (unmatched) expectation, e.g. after it was abandoned."""
        key = reference.address
        if key not in self._results:
            self._expectations.pop(key, None)
