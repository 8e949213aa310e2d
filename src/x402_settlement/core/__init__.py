"""
Core primitives that implement payment verification and settlement.
"""

from .broadcast import BroadcastResult, SignerQueue
from .builder import TemplateKind, TransactionBuilder, TransactionTemplate, instruction_labels
from .challenge import RewardChallenge, verify_message_signature
from .config import (
    DeploymentProfile,
    SettlementConfig,
    SettlementParameters,
    load_settlement_config,
)
from .context import SettlementContext
from .environment import SettlementEnvironment, build_environment, load_env_file
from .errors import (
    ConfigError,
    NotFoundYet,
    OnChainExecutionFailure,
    RpcError,
    RpcErrorKind,
    RpcPermanent,
    RpcTransient,
    SettlementError,
    TemplateError,
    TemplateExpired,
    ValidationMismatch,
    VerificationTimeout,
)
from .ledger import Commitment, TransactionRecord
from .locator import PaymentLocator
from .models import PaymentReference, TransferExpectation, VerificationResult
from .reference import ReferenceTracker
from .retry import RetryPolicy
from .rpc import SolanaRpcClient
from .spam import SpamReport, SpamRisk, TokenProfile, detect_spam_token, detect_spam_tokens
from .tiers import (
    DiscountQuote,
    HolderLookup,
    Tier,
    TierBenefits,
    TierInfo,
    benefits_for,
    quote,
    tier_for,
)
from .validator import TransferValidator, extract_payer, fetch_payer
from .verifier import PaymentVerifier
from .waiter import ConfirmationOutcome, ConfirmationWaiter, WaitState

__all__ = [
    "BroadcastResult",
    "Commitment",
    "ConfigError",
    "ConfirmationOutcome",
    "ConfirmationWaiter",
    "DeploymentProfile",
    "DiscountQuote",
    "HolderLookup",
    "NotFoundYet",
    "OnChainExecutionFailure",
    "PaymentLocator",
    "PaymentReference",
    "PaymentVerifier",
    "ReferenceTracker",
    "RetryPolicy",
    "RewardChallenge",
    "RpcError",
    "RpcErrorKind",
    "RpcPermanent",
    "RpcTransient",
    "SettlementConfig",
    "SettlementContext",
    "SettlementEnvironment",
    "SettlementError",
    "SettlementParameters",
    "SignerQueue",
    "SolanaRpcClient",
    "SpamReport",
    "SpamRisk",
    "TemplateError",
    "TemplateExpired",
    "TemplateKind",
    "Tier",
    "TierBenefits",
    "TierInfo",
    "TokenProfile",
    "TransactionBuilder",
    "TransactionRecord",
    "TransactionTemplate",
    "TransferExpectation",
    "TransferValidator",
    "ValidationMismatch",
    "VerificationResult",
    "VerificationTimeout",
    "WaitState",
    "benefits_for",
    "build_environment",
    "detect_spam_token",
    "detect_spam_tokens",
    "extract_payer",
    "fetch_payer",
    "instruction_labels",
    "load_env_file",
    "load_settlement_config",
    "quote",
    "tier_for",
    "verify_message_signature",
]
