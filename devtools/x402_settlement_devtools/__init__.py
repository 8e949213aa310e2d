"""
Development helpers for x402-settlement.

This package lives outside ``src/`` and is never part of the installed
distribution; add ``devtools/`` to the path of local and test deployments
that need it.
"""

from .bypass import BypassVerifier, bypass_context, mock_signature

__all__ = ("BypassVerifier", "bypass_context", "mock_signature")
