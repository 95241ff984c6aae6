"""
ledger_onboarding.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (operator JWT secret).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    One settings object is built per process and injected into the identity
    store, the authority/ledger clients and the onboarding service.
    """

    model_config = SettingsConfigDict(env_prefix="LOB_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "ledger-onboarding"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Operator auth (HTTP surface)
    jwt_alg: str = "HS256"
    jwt_issuer: str = "ledger-onboarding"
    jwt_audience: str = "ledger-onboarding-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Identity store
    database_url: str = "sqlite+aiosqlite:///./identities.db"

    # Certificate authority
    authority_base_url: str = "https://localhost:7054"
    authority_ca_name: str = "ca-org1"
    authority_verify_tls: bool = True

    # Ledger gateway
    ledger_gateway_url: str = "https://localhost:7080"
    ledger_channel: str = "mychannel"
    ledger_chaincode: str = "ehrChainCode"
    ledger_verify_tls: bool = True

    # Deadlines (seconds) applied to every network-bound step unless the caller passes one.
    request_timeout_s: float = 30.0

    # Upper bound on concurrent onboard() calls issued through onboard_many().
    max_concurrent_onboardings: int = Field(default=4, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Connection profiles (per-org JSON files) are not loaded here; the authority and
# gateway endpoints are plain URLs supplied by the environment.
