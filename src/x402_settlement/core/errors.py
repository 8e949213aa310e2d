"""
Error taxonomy for payment verification and settlement.

Raw transport and JSON-RPC failures are translated into these types inside
:mod:`x402_settlement.core.rpc`; nothing else in the package inspects raw
error payloads.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

__all__ = [
    "ConfigError",
    "NotFoundYet",
    "OnChainExecutionFailure",
    "RpcError",
    "RpcErrorKind",
    "RpcPermanent",
    "RpcTransient",
    "SettlementError",
    "TemplateError",
    "TemplateExpired",
    "ValidationMismatch",
    "VerificationTimeout",
]


class ConfigError(Exception):
    """Raised when the supplied configuration or request input is invalid."""


class RpcErrorKind(enum.Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    NODE_BEHIND = "node_behind"
    BLOCKHASH_NOT_FOUND = "blockhash_not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_REQUEST = "invalid_request"
    ALREADY_PROCESSED = "already_processed"
    TRANSACTION_REJECTED = "transaction_rejected"
    MALFORMED_RESPONSE = "malformed_response"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {
        RpcErrorKind.RATE_LIMITED,
        RpcErrorKind.SERVER_ERROR,
        RpcErrorKind.NETWORK,
        RpcErrorKind.NODE_BEHIND,
        RpcErrorKind.BLOCKHASH_NOT_FOUND,
    }
)


class SettlementError(Exception):
    """
    Base class for every terminal or retryable settlement failure.

    The context attributes are enough to drive a refund decision without
    querying the ledger again.
    """

    def __init__(
        self,
        message: str,
        *,
        reference: Optional[str] = None,
        expected_amount: Optional[int] = None,
        signature: Optional[str] = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.reference = reference
        self.expected_amount = expected_amount
        self.signature = signature
        self.detail = detail

    def context(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "reference": self.reference,
            "expected_amount": self.expected_amount,
            "signature": self.signature,
            "detail": self.detail,
        }


class NotFoundYet(SettlementError):
    """No signature has been observed for the reference yet."""


class RpcError(SettlementError):
    def __init__(self, message: str, *, kind: RpcErrorKind, **context: Any) -> None:
        super().__init__(message, **context)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class RpcTransient(RpcError):
    """Rate limiting, 5xx, network faults or a lagging node."""


class RpcPermanent(RpcError):
    """An RPC failure that will not go away by asking again."""


class OnChainExecutionFailure(SettlementError):
    """The ledger recorded an execution error for the located signature."""


class ValidationMismatch(SettlementError):
    """The transaction succeeded but does not satisfy the expectation."""

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
        reason: str = "mismatch",
        **context: Any,
    ) -> None:
        context.setdefault("expected_amount", expected)
        super().__init__(message, **context)
        self.expected = expected
        self.actual = actual
        self.reason = reason

    def context(self) -> dict[str, Any]:
        payload = super().context()
        payload.update(expected=self.expected, actual=self.actual, reason=self.reason)
        return payload


class VerificationTimeout(SettlementError):
    """
    The deadline elapsed before the payment reached the target commitment.

    ``state`` is the waiter state at expiry; when no signature was ever seen
    it is ``"searching"`` and callers may start a fresh wait on the same
    reference.
    """

    def __init__(self, message: str, *, state: str = "searching", **context: Any) -> None:
        super().__init__(message, **context)
        self.state = state


class TemplateError(SettlementError):
    """A transaction template could not be built for the requested transfer."""


class TemplateExpired(TemplateError):
    """The template's blockhash is past its validity window; rebuild it."""
