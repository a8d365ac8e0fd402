"""Signing delegates: the remote threshold signer and a local HD signer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence

import boto3
import requests
from eth_account import Account
from pydantic import BaseModel, Field, ValidationError

from .codec import LEGACY_TX_TYPE, Transaction, TransactionDecodeError, decode_transaction_hex
from .config import SignerSettings
from .derivation import format_bip32_path
from .observability import call_timeout

logger = logging.getLogger(__name__)


class SignerError(RuntimeError):
    pass


class SigningDelegate(Protocol):
    def sign(
        self, tx: Transaction, key_id: str, derivation_path: Sequence[int], timeout: Optional[float] = None
    ) -> Transaction: ...


class SignerCredentials(BaseModel):
    url: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    api_key: str = Field(min_length=1)


def _secrets_client(settings: SignerSettings):
    kwargs: dict[str, Any] = {"region_name": settings.signer_secret_region}
    if settings.is_local:
        kwargs["endpoint_url"] = settings.signer_localstack_endpoint
    return boto3.client("secretsmanager", **kwargs)


def _parse_credentials(raw: str, source: str) -> SignerCredentials:
    try:
        return SignerCredentials.model_validate_json(raw)
    except ValidationError as exc:
        raise SignerError(f"Signer credentials from {source} are invalid: {exc}") from exc


def load_signer_credentials(settings: SignerSettings, client: Any = None) -> SignerCredentials:
    """Read threshold signer credentials from a local file or AWS Secrets Manager."""
    path = settings.signer_credentials_path
    if path is not None:
        resolved = Path(path).expanduser()
        try:
            raw = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            raise SignerError(f"Unable to read signer credentials file {resolved}: {exc}") from exc
        return _parse_credentials(raw, f"file:{resolved}")

    secret_name = (settings.signer_secret_name or "").strip()
    if not secret_name:
        raise SignerError("please set SIGNER_SECRET_NAME in the environment as it is a required value")

    client = client or _secrets_client(settings)
    logger.debug("Fetching signer secret %s", secret_name)
    try:
        result = client.get_secret_value(SecretId=secret_name, VersionStage="AWSCURRENT")
    except Exception as exc:
        logger.error(
            "Could not fetch secret value %s (region=%s): %s",
            secret_name,
            settings.signer_secret_region,
            exc,
        )
        raise SignerError(f"Could not fetch signer secret {secret_name}") from exc
    secret = result.get("SecretString")
    if not secret:
        raise SignerError(f"Signer secret {secret_name} has no SecretString")
    return _parse_credentials(secret, f"secret:{secret_name}")


def _verify_signed(request_tx: Transaction, signed: Transaction, chain_id: int) -> Transaction:
    if not signed.is_signed:
        raise SignerError("Signer returned an unsigned transaction")
    if not signed.same_payload(_with_chain(request_tx, chain_id)):
        raise SignerError("Signed transaction does not match the requested payload")
    return signed


def _with_chain(tx: Transaction, chain_id: int) -> Transaction:
    if tx.tx_type == LEGACY_TX_TYPE:
        return tx
    if tx.declared_chain_id not in (None, 0, chain_id):
        raise SignerError(
            f"Transaction chain id {tx.declared_chain_id} does not match signer chain id {chain_id}"
        )
    return replace(tx, declared_chain_id=chain_id)


@dataclass
class ThresholdSigningClient:
    """HTTP client for the threshold-signing backend.

    One request per call; retrying a half-finished signing session is left to
    queue redelivery.
    """

    credentials: SignerCredentials
    chain_id: int
    timeout_seconds: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    @property
    def endpoint(self) -> str:
        return self.credentials.url.rstrip("/") + "/rpc"

    def _rpc(
        self, method: str, params: Optional[dict[str, Any]] = None, timeout: Optional[float] = None
    ) -> dict[str, Any]:
        request = {"method": method, "params": params or {}}
        headers = {
            "Authorization": f"Bearer {self.credentials.api_key}",
            "X-User-Id": self.credentials.user_id,
        }
        try:
            resp = self.session.post(
                self.endpoint,
                json=request,
                headers=headers,
                timeout=call_timeout(self.timeout_seconds, timeout),
            )
        except requests.RequestException as exc:
            raise SignerError(f"Threshold signer request failed: {exc}") from exc
        try:
            response = resp.json()
        except ValueError as exc:
            raise SignerError(f"Threshold signer returned invalid JSON (status={resp.status_code})") from exc
        if not isinstance(response, dict):
            raise SignerError("Threshold signer returned invalid response")
        if "error" in response:
            error = response.get("error")
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise SignerError(message or "Threshold signer error")
        if resp.status_code >= 400:
            raise SignerError(f"Threshold signer returned HTTP {resp.status_code}")
        result = response.get("result")
        if not isinstance(result, dict):
            raise SignerError("Threshold signer returned invalid result")
        return result

    def sign(
        self, tx: Transaction, key_id: str, derivation_path: Sequence[int], timeout: Optional[float] = None
    ) -> Transaction:
        result = self._rpc(
            "sign_transaction",
            {
                "key_id": key_id,
                "derivation_path": [int(value) for value in derivation_path],
                "chain_id": self.chain_id,
                "tx": tx.hex(),
            },
            timeout=timeout,
        )
        raw_tx_hex = str(result.get("raw_tx") or "").strip()
        if not raw_tx_hex:
            raise SignerError("Threshold signer returned no raw_tx")
        try:
            signed = decode_transaction_hex(raw_tx_hex)
        except TransactionDecodeError as exc:
            raise SignerError(f"Threshold signer returned an undecodable transaction: {exc}") from exc
        return _verify_signed(tx, signed, self.chain_id)


@dataclass
class LocalHDSigner:
    """Signs with keys derived from a BIP-39 mnemonic. Local environments only."""

    mnemonic: str
    chain_id: int

    def __post_init__(self) -> None:
        Account.enable_unaudited_hdwallet_features()

    def account_for(self, derivation_path: Sequence[int]):
        return Account.from_mnemonic(self.mnemonic, account_path=format_bip32_path(derivation_path))

    def sign(
        self, tx: Transaction, key_id: str, derivation_path: Sequence[int], timeout: Optional[float] = None
    ) -> Transaction:
        # Signs in process; nothing to bound by the timeout.
        try:
            account = self.account_for(derivation_path)
        except (ValueError, TypeError) as exc:
            raise SignerError(f"Could not derive key {key_id}: {exc}") from exc
        request_tx = _with_chain(tx, self.chain_id)
        try:
            signed = Account.sign_transaction(request_tx.to_signable_dict(self.chain_id), account.key)
        except Exception as exc:
            raise SignerError(f"Local signer rejected transaction: {exc}") from exc
        raw = getattr(signed, "rawTransaction", None) or getattr(signed, "raw_transaction", None)
        if raw is None:  # pragma: no cover
            raise SignerError("Signed transaction missing raw bytes")
        logger.debug("Signed locally with key %s at %s", key_id, format_bip32_path(derivation_path))
        return _verify_signed(tx, decode_transaction_hex(bytes(raw).hex()), self.chain_id)


def build_signer(settings: SignerSettings) -> SigningDelegate:
    if settings.signer_mnemonic:
        logger.warning("Using local mnemonic signer (ENVIRONMENT=%s)", settings.environment)
        return LocalHDSigner(mnemonic=settings.signer_mnemonic, chain_id=settings.chain_id)
    credentials = load_signer_credentials(settings)
    if settings.signer_url:
        credentials = credentials.model_copy(update={"url": settings.signer_url})
    return ThresholdSigningClient(
        credentials=credentials,
        chain_id=settings.chain_id,
        timeout_seconds=settings.transport_timeout_seconds,
    )
