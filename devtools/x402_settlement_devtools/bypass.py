"""
Verification stand-in for local development and test deployments.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Union

from x402_settlement.core.config import DeploymentProfile, SettlementConfig
from x402_settlement.core.context import SettlementContext
from x402_settlement.core.errors import ConfigError
from x402_settlement.core.models import TransferExpectation, VerificationResult
from x402_settlement.core.reference import ReferenceTracker

__all__ = ["BypassVerifier", "bypass_context", "mock_signature"]


def mock_signature(reference: str) -> str:
    return f"MOCK_{reference[:44]}_VERIFIED"


class BypassVerifier:
    def __init__(
        self,
        profile: DeploymentProfile,
        *,
        tracker: Optional[ReferenceTracker] = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        if profile is DeploymentProfile.PRODUCTION:
            raise ConfigError("Verification bypass is not available in production deployments")
        self.profile = profile
        self.tracker = tracker or ReferenceTracker()
        self.wall_clock = wall_clock
        logging.warning(
            "Payment verification is BYPASSED (profile %s); never use this with real funds",
            profile.value,
        )

    async def verify(
        self,
        expectation: TransferExpectation,
        *,
        timeout: Optional[float] = None,
    ) -> VerificationResult:
        cached = self.tracker.cached_result(expectation)
        if cached is not None:
            return cached
        self.tracker.register(expectation)
        reference = expectation.reference.address
        logging.warning("Skipping on-chain verification for reference %s", reference)
        result = VerificationResult(
            signature=mock_signature(reference),
            validated_amount=expectation.amount,
            timestamp=int(self.wall_clock()),
            reference=reference,
        )
        return self.tracker.consume(expectation, result)

    async def verify_many(
        self,
        expectations: Sequence[TransferExpectation],
        *,
        timeout: Optional[float] = None,
    ) -> List[Union[VerificationResult, BaseException]]:
        results: List[Union[VerificationResult, BaseException]] = []
        for expectation in expectations:
            try:
                results.append(await self.verify(expectation))
            except ConfigError as exc:
                results.append(exc)
        return results


def bypass_context(config: SettlementConfig, **kwargs) -> SettlementContext:
    """
    Build a :class:`SettlementContext` whose verifier skips the ledger.

    Requires a non-production ``X402_DEPLOYMENT_PROFILE`` and
    ``X402_MOCK_PAYMENTS``.
    """
    if not config.bypass_verification:
        raise ConfigError(
            "Verification bypass needs a non-production X402_DEPLOYMENT_PROFILE "
            "and X402_MOCK_PAYMENTS=true"
        )
    tracker = ReferenceTracker()
    verifier = BypassVerifier(config.deployment_profile, tracker=tracker)
    return SettlementContext(config, tracker=tracker, verifier=verifier, **kwargs)
