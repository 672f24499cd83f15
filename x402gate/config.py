"""
x402-gate Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

from typing import Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from x402gate.payments.keys import SEED_SIZE, decode_key


def _validate_seed(v: str) -> str:
    v = v.strip()
    if v:
        decode_key(v, SEED_SIZE)
    return v


class AuthorizerConfig(BaseSettings):
    """Configuration for the paid gateway"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    gateway_host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    gateway_port: int = Field(default=8402, description="Port to bind the server to")

    # Identity
    gateway_signing_seed: str = Field(
        default="",
        description="Base58 Ed25519 seed; a throwaway key is generated when empty"
    )

    # Pricing
    asset_id: str = Field(default="USDC", description="Asset accepted for payment")
    default_price: int = Field(default=1000, gt=0, description="Price in smallest asset unit")

    # x402 Protocol
    x402_enabled: bool = Field(default=True)
    challenge_ttl_seconds: int = Field(default=30, ge=1, le=300)
    nonce_grace_seconds: int = Field(default=5, ge=0)

    # Nonce Ledger
    ledger_backend: Literal["memory", "redis"] = Field(default="memory")
    ledger_max_entries: int = Field(default=100_000, gt=0)
    eviction_interval_seconds: float = Field(default=10.0, gt=0)
    upstash_redis_rest_url: str = Field(default="")
    upstash_redis_rest_token: str = Field(default="")

    # Settlement
    settlement_url: str = Field(default="", description="Settlement queue endpoint; logs receipts when empty")
    settlement_timeout: float = Field(default=5.0, gt=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    @field_validator("gateway_signing_seed")
    @classmethod
    def validate_signing_seed(cls, v):
        return _validate_seed(v)


class RequesterConfig(BaseSettings):
    """Configuration for the paying agent"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Wallet Configuration
    agent_signing_seed: str = Field(default="", description="Base58 Ed25519 seed for payments")

    # Negotiation
    max_retries: int = Field(default=3, ge=1, description="Maximum signings per call")
    request_timeout: float = Field(default=10.0, gt=0, description="Per round trip, in seconds")

    # Balance source
    balance_url: str = Field(default="", description="Ledger balance service base URL")
    balance_cache_ttl: float = Field(default=30.0, ge=0)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    @field_validator("agent_signing_seed")
    @classmethod
    def validate_signing_seed(cls, v):
        return _validate_seed(v)


# Singleton instances
_authorizer_config: AuthorizerConfig | None = None
_requester_config: RequesterConfig | None = None


def get_authorizer_config() -> AuthorizerConfig:
    """Get or create gateway configuration singleton"""
    global _authorizer_config
    if _authorizer_config is None:
        _authorizer_config = AuthorizerConfig()
    return _authorizer_config


def get_requester_config() -> RequesterConfig:
    """Get or create agent configuration singleton"""
    global _requester_config
    if _requester_config is None:
        _requester_config = RequesterConfig()
    return _requester_config
