"""
Process-wide settlement context: built once at start-up, closed at shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import requests

from .broadcast import SignerQueue
from .builder import TransactionBuilder
from .config import DeploymentProfile, SettlementConfig
from .errors import ConfigError
from .locator import PaymentLocator
from .reference import ReferenceTracker
from .retry import Clock, RetryPolicy, Sleep
from .rpc import SolanaRpcClient
from .tiers import HolderLookup
from .validator import TransferValidator
from .verifier import PaymentVerifier
from .waiter import ConfirmationWaiter

__all__ = ["SettlementContext"]


class SettlementContext:
    """
    Owns the shared RPC client, reference tracker, retry policy and signer
    queue, and hands out components wired to them.
    """

    def __init__(
        self,
        config: SettlementConfig,
        *,
        rpc=None,
        session: Optional[requests.Session] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
        tracker: Optional[ReferenceTracker] = None,
        verifier=None,
    ) -> None:
        if (
            verifier is not None
            and config.deployment_profile is DeploymentProfile.PRODUCTION
            and not isinstance(verifier, PaymentVerifier)
        ):
            raise ConfigError("Production deployments verify payments on-chain only")
        self.config = config
        self.rpc = rpc or SolanaRpcClient(
            config.rpc_url,
            session=session,
            timeout=config.rpc_timeout_seconds,
        )
        self.retry = retry or RetryPolicy(max_retries=config.rpc_max_retries)
        self.tracker = tracker or ReferenceTracker()
        self.sleep = sleep
        self.clock = clock
        self.signer_queue = SignerQueue(
            self.rpc,
            retry=self.retry,
            waiter=self.waiter(),
            preflight_commitment=config.commitment,
            confirm_timeout=config.verify_timeout_seconds,
            sleep=sleep,
        )
        self._verifier = verifier
        logging.info(
            "Settlement context ready: network=%s rpc=%s commitment=%s asset=%s",
            config.network,
            config.rpc_url,
            config.commitment.value,
            config.asset_label,
        )

    def locator(self) -> PaymentLocator:
        return PaymentLocator(
            self.rpc,
            retry=self.retry,
            poll_interval=self.config.poll_interval_seconds,
            sleep=self.sleep,
            clock=self.clock,
        )

    def waiter(self) -> ConfirmationWaiter:
        return ConfirmationWaiter(
            self.rpc,
            self.locator(),
            target=self.config.commitment,
            retry=self.retry,
            poll_interval=self.config.confirm_interval_seconds,
            sleep=self.sleep,
            clock=self.clock,
        )

    def verifier(self):
        """The injected verifier, or the on-chain :class:`PaymentVerifier`."""
        if self._verifier is None:
            self._verifier = PaymentVerifier(
                self.rpc,
                self.waiter(),
                tracker=self.tracker,
                validator=TransferValidator(),
                retry=self.retry,
                default_timeout=self.config.verify_timeout_seconds,
                poll_interval=self.config.poll_interval_seconds,
                sleep=self.sleep,
                clock=self.clock,
            )
        return self._verifier

    def builder(self) -> TransactionBuilder:
        return TransactionBuilder(
            self.rpc,
            asset_mint=self.config.asset_mint,
            asset_decimals=self.config.asset_decimals,
            facilitator_fee_payer=self.config.fee_payer,
            separate_fee_payer=self.config.separate_fee_payer,
            retry=self.retry,
            sleep=self.sleep,
        )

    def holders(self) -> HolderLookup:
        if self.config.holder_mint is None:
            raise ConfigError("X402_HOLDER_MINT must be set to look up holder tiers")
        return HolderLookup(
            self.rpc,
            mint=self.config.holder_mint,
            decimals=self.config.holder_decimals,
            retry=self.retry,
            sleep=self.sleep,
        )

    def close(self) -> None:
        close = getattr(self.rpc, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "SettlementContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
