"""Settings loader for the transaction signer."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import NetworkType, TransferType

DEFAULT_AWS_REGION = "eu-west-2"
DEFAULT_LOCALSTACK_ENDPOINT = "http://host.docker.internal:4566"

LOG_LEVEL_NAMES = {
    "TRACE",
    "DEBUG",
    "INFO",
    "WARN",
    "WARNING",
    "ERROR",
    "FATAL",
    "CRITICAL",
    "PANIC",
}


class SignerSettings(BaseSettings):
    log_level: str = Field(default="INFO")
    environment: str = Field(default="production")
    service_name: str = Field(default="txsigner")

    wallets_database_url: Optional[str] = Field(default=None)
    transactions_database_url: Optional[str] = Field(default=None)

    sqs_region: str = Field(default=DEFAULT_AWS_REGION)
    sqs_read_queue_name: Optional[str] = Field(default=None)
    sqs_write_queue_name: Optional[str] = Field(default=None)
    sqs_localstack_endpoint: str = Field(default=DEFAULT_LOCALSTACK_ENDPOINT)
    sqs_wait_seconds: int = Field(default=20, ge=0, le=20)

    signer_url: Optional[str] = Field(default=None)
    signer_secret_name: Optional[str] = Field(default=None)
    signer_secret_region: str = Field(default=DEFAULT_AWS_REGION)
    signer_localstack_endpoint: str = Field(default=DEFAULT_LOCALSTACK_ENDPOINT)
    signer_credentials_path: Optional[Path] = Field(default=None)
    signer_mnemonic: Optional[str] = Field(default=None)

    chain_rpc_url: Optional[str] = Field(default=None)
    chain_id: int = Field(default=1)

    network_type: NetworkType = Field(default=NetworkType.MAINNET)
    transfer_type: TransferType = Field(default=TransferType.EOA)
    verify_sender: bool = Field(default=True)

    transport_timeout_seconds: float = Field(default=10.0)
    invocation_timeout_seconds: float = Field(default=60.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_local(self) -> bool:
        """Debug instrumentation and localstack endpoints are only enabled locally."""
        return self.environment.strip().upper() == "LOCAL"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        candidate = value.strip().upper()
        if candidate not in LOG_LEVEL_NAMES:
            raise ValueError(f"unrecognized LOG_LEVEL value: {value}")
        return candidate

    @field_validator("chain_id")
    @classmethod
    def validate_chain_id(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("CHAIN_ID must be a positive integer")
        return value

    @field_validator("transport_timeout_seconds", "invocation_timeout_seconds")
    @classmethod
    def validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Value must be positive")
        return value

    @field_validator(
        "wallets_database_url",
        "transactions_database_url",
        "sqs_read_queue_name",
        "sqs_write_queue_name",
        "signer_url",
        "signer_secret_name",
        "signer_mnemonic",
        "chain_rpc_url",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):  # type: ignore[override]
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def validate_signer_source(self) -> "SignerSettings":
        if self.signer_mnemonic and not self.is_local:
            raise ValueError("SIGNER_MNEMONIC is only allowed when ENVIRONMENT=local")
        return self


settings = SignerSettings()
