"""
Configuration objects and helpers for payment settlement.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from solders.pubkey import Pubkey

from .environment import build_environment
from .errors import ConfigError
from .ledger import Commitment
from .models import parse_asset
from .units import SOL_DECIMALS, USDC_DECIMALS, parse_address, usdc_mint_for_network

__all__ = [
    "ConfigError",
    "DeploymentProfile",
    "SettlementConfig",
    "SettlementParameters",
    "load_settlement_config",
]

PAYAI_FEE_PAYER = "2wKupLR9q6wXYppw8Gr2NvWxKBUqm4PPJKkQfoxHDBg4"

_CLUSTER_URLS = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}

_PARAMETER_TO_ENV_KEY = {
    "network": "X402_NETWORK",
    "rpc_url": "X402_RPC_URL",
    "commitment": "X402_COMMITMENT",
    "asset_mint": "X402_ASSET_MINT",
    "asset_decimals": "X402_ASSET_DECIMALS",
    "fee_payer": "X402_FEE_PAYER",
    "separate_fee_payer": "X402_SEPARATE_FEE_PAYER",
    "poll_interval_seconds": "X402_POLL_INTERVAL_SECONDS",
    "confirm_interval_seconds": "X402_CONFIRM_INTERVAL_SECONDS",
    "verify_timeout_seconds": "X402_VERIFY_TIMEOUT_SECONDS",
    "rpc_timeout_seconds": "X402_RPC_TIMEOUT_SECONDS",
    "rpc_max_retries": "X402_RPC_MAX_RETRIES",
    "holder_mint": "X402_HOLDER_MINT",
    "holder_decimals": "X402_HOLDER_DECIMALS",
    "deployment_profile": "X402_DEPLOYMENT_PROFILE",
    "mock_payments": "X402_MOCK_PAYMENTS",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class DeploymentProfile(enum.Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: str) -> "DeploymentProfile":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(profile.value for profile in cls)
            raise ConfigError(
                f"X402_DEPLOYMENT_PROFILE must be one of {allowed}, got '{value}'"
            ) from exc


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_bool(raw: str, field_name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{field_name} must be a boolean, got '{raw}'")


def _parse_int(raw: str, field_name: str, *, minimum: int = 0) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be an integer, got '{raw}'") from exc
    if value < minimum:
        raise ConfigError(f"{field_name} must be at least {minimum}")
    return value


def _parse_seconds(raw: str, field_name: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{field_name} must be a number of seconds, got '{raw}'") from exc
    if value <= 0:
        raise ConfigError(f"{field_name} must be greater than zero")
    return value


def _parse_commitment(raw: str) -> Commitment:
    commitment = Commitment.parse(raw.strip().lower())
    if commitment not in (Commitment.CONFIRMED, Commitment.FINALIZED):
        raise ConfigError(f"X402_COMMITMENT must be 'confirmed' or 'finalized', got '{raw}'")
    return commitment


@dataclass(frozen=True)
class SettlementParameters:
    """
    Explicit parameter bundle for constructing :class:`SettlementConfig`.

    Callers can either instantiate this helper or pass the individual keyword
    arguments directly to :func:`load_settlement_config`.
    """

    network: Optional[str] = None
    rpc_url: Optional[str] = None
    commitment: Optional[str] = None
    asset_mint: Optional[str] = None
    asset_decimals: Optional[int | str] = None
    fee_payer: Optional[str] = None
    separate_fee_payer: Optional[bool | str] = None
    poll_interval_seconds: Optional[float | str] = None
    confirm_interval_seconds: Optional[float | str] = None
    verify_timeout_seconds: Optional[float | str] = None
    rpc_timeout_seconds: Optional[float | str] = None
    rpc_max_retries: Optional[int | str] = None
    holder_mint: Optional[str] = None
    holder_decimals: Optional[int | str] = None
    deployment_profile: Optional[str] = None
    mock_payments: Optional[bool | str] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            overrides[env_key] = _stringify(value)
        return overrides


@dataclass(frozen=True)
class SettlementConfig:
    network: str
    rpc_url: str
    commitment: Commitment
    asset_mint: Optional[Pubkey]
    asset_decimals: int
    fee_payer: Pubkey
    separate_fee_payer: bool = True
    poll_interval_seconds: float = 1.0
    confirm_interval_seconds: float = 2.0
    verify_timeout_seconds: float = 30.0
    rpc_timeout_seconds: float = 30.0
    rpc_max_retries: int = 3
    holder_mint: Optional[Pubkey] = None
    holder_decimals: int = 9
    deployment_profile: DeploymentProfile = DeploymentProfile.PRODUCTION
    mock_payments: bool = False

    @property
    def bypass_verification(self) -> bool:
        """Only honoured outside production, whatever the flag says."""
        if self.deployment_profile is DeploymentProfile.PRODUCTION:
            return False
        return self.mock_payments

    @property
    def asset_label(self) -> str:
        return "SOL" if self.asset_mint is None else str(self.asset_mint)

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "SettlementConfig":
        network = values.get("X402_NETWORK", "mainnet-beta").strip()
        if network not in _CLUSTER_URLS:
            raise ConfigError(
                f"X402_NETWORK must be 'mainnet-beta' or 'devnet', got '{network}'"
            )
        rpc_url = values.get("X402_RPC_URL") or _CLUSTER_URLS[network]

        commitment = _parse_commitment(values.get("X402_COMMITMENT", "confirmed"))

        mint_raw = values.get("X402_ASSET_MINT")
        if mint_raw:
            asset_mint = parse_asset(mint_raw)
            default_decimals = str(USDC_DECIMALS) if asset_mint is not None else str(SOL_DECIMALS)
        else:
            asset_mint = usdc_mint_for_network(network)
            default_decimals = str(USDC_DECIMALS)
        asset_decimals = _parse_int(
            values.get("X402_ASSET_DECIMALS", default_decimals), "X402_ASSET_DECIMALS"
        )

        fee_payer = parse_address(values.get("X402_FEE_PAYER", PAYAI_FEE_PAYER), "X402_FEE_PAYER")
        separate_fee_payer = _parse_bool(
            values.get("X402_SEPARATE_FEE_PAYER", "true"), "X402_SEPARATE_FEE_PAYER"
        )

        holder_raw = values.get("X402_HOLDER_MINT")
        holder_mint = parse_address(holder_raw, "X402_HOLDER_MINT") if holder_raw else None

        profile = DeploymentProfile.parse(values.get("X402_DEPLOYMENT_PROFILE", "production"))
        mock_payments = _parse_bool(values.get("X402_MOCK_PAYMENTS", "false"), "X402_MOCK_PAYMENTS")

        return cls(
            network=network,
            rpc_url=rpc_url.rstrip("/"),
            commitment=commitment,
            asset_mint=asset_mint,
            asset_decimals=asset_decimals,
            fee_payer=fee_payer,
            separate_fee_payer=separate_fee_payer,
            poll_interval_seconds=_parse_seconds(
                values.get("X402_POLL_INTERVAL_SECONDS", "1"), "X402_POLL_INTERVAL_SECONDS"
            ),
            confirm_interval_seconds=_parse_seconds(
                values.get("X402_CONFIRM_INTERVAL_SECONDS", "2"), "X402_CONFIRM_INTERVAL_SECONDS"
            ),
            verify_timeout_seconds=_parse_seconds(
                values.get("X402_VERIFY_TIMEOUT_SECONDS", "30"), "X402_VERIFY_TIMEOUT_SECONDS"
            ),
            rpc_timeout_seconds=_parse_seconds(
                values.get("X402_RPC_TIMEOUT_SECONDS", "30"), "X402_RPC_TIMEOUT_SECONDS"
            ),
            rpc_max_retries=_parse_int(
                values.get("X402_RPC_MAX_RETRIES", "3"), "X402_RPC_MAX_RETRIES"
            ),
            holder_mint=holder_mint,
            holder_decimals=_parse_int(
                values.get("X402_HOLDER_DECIMALS", "9"), "X402_HOLDER_DECIMALS"
            ),
            deployment_profile=profile,
            mock_payments=mock_payments,
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[SettlementParameters] = None,
        **explicit: Any,
    ) -> "SettlementConfig":
        parameter_overrides: Dict[str, str] = {}
        if parameters is not None:
            parameter_overrides.update(parameters.as_overrides())
        for key, value in explicit.items():
            if value is None:
                continue
            try:
                env_key = _PARAMETER_TO_ENV_KEY[key]
            except KeyError as exc:
                raise TypeError(f"Unknown settlement parameter '{key}'") from exc
            parameter_overrides[env_key] = _stringify(value)

        merged_overrides = dict(overrides or {})
        merged_overrides.update(parameter_overrides)

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.variables)


def load_settlement_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[SettlementParameters] = None,
    network: Optional[str] = None,
    rpc_url: Optional[str] = None,
    commitment: Optional[str] = None,
    asset_mint: Optional[str] = None,
    asset_decimals: Optional[int | str] = None,
    fee_payer: Optional[str] = None,
    verify_timeout_seconds: Optional[float | str] = None,
    holder_mint: Optional[str] = None,
    deployment_profile: Optional[str] = None,
    mock_payments: Optional[bool | str] = None,
) -> SettlementConfig:
    """
    Convenience wrapper that mirrors :meth:`SettlementConfig.from_env`.

    The configuration can be provided entirely through environment variables,
    a ``.env`` file, direct keyword arguments, or any combination of the three.
    Less common keys are reachable through ``parameters`` or ``overrides``.
    """
    return SettlementConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        network=network,
        rpc_url=rpc_url,
        commitment=commitment,
        asset_mint=asset_mint,
        asset_decimals=asset_decimals,
        fee_payer=fee_payer,
        verify_timeout_seconds=verify_timeout_seconds,
        holder_mint=holder_mint,
        deployment_profile=deployment_profile,
        mock_payments=mock_payments,
    )
