"""
Public facade for the x402 settlement package.

The module re-exports the most useful pieces for integrators so they can
``from x402_settlement import ...`` without navigating the package.
"""

from .api import create_settlement_context, quote_price, verify_payment
from .core import (
    Commitment,
    ConfigError,
    DeploymentProfile,
    DiscountQuote,
    NotFoundYet,
    OnChainExecutionFailure,
    PaymentReference,
    PaymentVerifier,
    ReferenceTracker,
    RetryPolicy,
    RewardChallenge,
    RpcPermanent,
    RpcTransient,
    SettlementConfig,
    SettlementContext,
    SettlementError,
    SettlementParameters,
    TemplateError,
    TemplateExpired,
    Tier,
    TransactionBuilder,
    TransactionTemplate,
    TransferExpectation,
    ValidationMismatch,
    VerificationResult,
    VerificationTimeout,
    benefits_for,
    build_environment,
    load_env_file,
    load_settlement_config,
    quote,
    tier_for,
    verify_message_signature,
)

__all__ = (
    "Commitment",
    "ConfigError",
    "DeploymentProfile",
    "DiscountQuote",
    "NotFoundYet",
    "OnChainExecutionFailure",
    "PaymentReference",
    "PaymentVerifier",
    "ReferenceTracker",
    "RetryPolicy",
    "RewardChallenge",
    "RpcPermanent",
    "RpcTransient",
    "SettlementConfig",
    "SettlementContext",
    "SettlementError",
    "SettlementParameters",
    "TemplateError",
    "TemplateExpired",
    "Tier",
    "TransactionBuilder",
    "TransactionTemplate",
    "TransferExpectation",
    "ValidationMismatch",
    "VerificationResult",
    "VerificationTimeout",
    "benefits_for",
    "build_environment",
    "create_settlement_context",
    "load_env_file",
    "load_settlement_config",
    "quote",
    "quote_price",
    "tier_for",
    "verify_message_signature",
    "verify_payment",
)
