"""Shared configuration management for the payment gateway.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from services.shared.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_RPC_URL=https://sepolia.base.org
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="fuel-paygate",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Chain node
    rpc_url: str = Field(
        default="",
        description="JSON-RPC endpoint of the chain node (use env var APP_RPC_URL)",
    )
    rpc_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single JSON-RPC call",
    )
    chain: str = Field(
        default="eip155:84532",
        description="CAIP-2 identifier of the settlement chain (Base Sepolia)",
    )
    chain_id: int = Field(
        default=84532,
        description="Numeric chain id the node must report",
    )

    # Settlement token
    token_symbol: str = Field(default="USDC", description="Stablecoin symbol")
    token_contract: str = Field(
        default="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        description="ERC-20 contract address of the settlement token",
    )
    token_decimals: int = Field(
        default=6,
        ge=0,
        description="Decimal precision of the settlement token",
    )

    # Address derivation
    station_mnemonic: SecretStr = Field(
        default=SecretStr(""),
        description="BIP-39 master mnemonic (use env var APP_STATION_MNEMONIC)",
    )
    allocation_state_path: str = Field(
        default="./station_state.json",
        description="File holding the persisted next derivation index",
    )
    derivation_start: int = Field(
        default=0,
        ge=0,
        description="First derivation index when no state file exists",
    )
    derivation_path_template: str = Field(
        default="m/44'/60'/0'/0/{index}",
        description="HD path template; only the leaf index varies",
    )

    # Invoices and pricing
    invoice_ttl_seconds: int = Field(
        default=120,
        gt=0,
        description="Time-to-live of a pending invoice",
    )
    price_margin: Decimal = Field(
        default=Decimal("0.05"),
        ge=0,
        description="Amount quoted below the client's unit price ceiling",
    )
    min_unit_price: Decimal = Field(
        default=Decimal("0.50"),
        gt=0,
        description="Minimum viable unit price",
    )

    def require_gateway_config(self) -> None:
        """Fail fast when settings the gateway cannot run without are missing.

        Raises:
            ConfigurationError: If the master mnemonic or the RPC URL is unset
        """
        missing = []
        if not self.station_mnemonic.get_secret_value().strip():
            missing.append("APP_STATION_MNEMONIC")
        if not self.rpc_url.strip():
            missing.append("APP_RPC_URL")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
