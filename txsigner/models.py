"""Domain records shared by the pipeline and its collaborators."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class State(str, Enum):
    """Lifecycle state of a transaction row. The signer only ever writes SIGNED."""

    INITIATED = "initiated"
    CREATED = "created"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    SETTLED = "settled"
    FINALIZED = "finalized"
    ERRED = "erred"


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


class TransferType(str, Enum):
    EOA = "eoa"
    SMART_CONTRACT = "smart_contract"


class SigningRequest(BaseModel):
    """Queue item asking for a raw transaction to be signed by a wallet."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default="")
    raw_transaction_hex: str = Field(alias="raw_tx")
    transaction_id: str = Field(default="")
    wallet_reference: int = Field(alias="wallet_row_id", ge=0, le=2**63 - 1)


class SignedOutboundItem(BaseModel):
    """Queue item handed to the broadcaster once a transaction is signed."""

    model_config = ConfigDict(frozen=True)

    id: str
    signed_tx: str
    transaction_id: str = Field(default="")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), separators=(",", ":"))


@dataclass(frozen=True)
class Wallet:
    id: int
    address: str
    key_id: str
    address_index: int = 0
    user_id: Optional[int] = None
    chain_id: Optional[int] = None
    is_multisig: bool = False
    multisig_threshold: Optional[int] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None


@dataclass(frozen=True)
class DerivationPath:
    id: int
    purpose: int
    coin_type: int
    account: int
    change: int
    wallet_id: Optional[int] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None


@dataclass
class TransactionRecord:
    trx_hash: str
    chain_id: int
    sender_address: str
    recipient_address: Optional[str]
    amount: Decimal
    nonce: int
    state: State = State.SIGNED
    network_type: NetworkType = NetworkType.MAINNET
    transfer_type: TransferType = TransferType.EOA
    max_fee: int = 0
    max_priority_fee: int = 0
    is_sender_paying_gas: bool = False
    id: Optional[int] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None

    def as_dict(self) -> dict[str, Union[str, int, bool, None]]:
        return {
            "id": self.id,
            "trx_hash": self.trx_hash,
            "chain_id": self.chain_id,
            "network_type": self.network_type.value,
            "state": self.state.value,
            "transfer_type": self.transfer_type.value,
            "sender_address": self.sender_address,
            "recipient_address": self.recipient_address,
            "amount": str(self.amount),
            "nonce": self.nonce,
            "max_fee": self.max_fee,
            "max_priority_fee": self.max_priority_fee,
            "is_sender_paying_gas": self.is_sender_paying_gas,
            "created": self.created.isoformat() if self.created else None,
            "updated": self.updated.isoformat() if self.updated else None,
        }


@dataclass
class SigningOutcome:
    """What a successful pipeline run produced."""

    record: TransactionRecord
    item: SignedOutboundItem
    warnings: list[Exception] = field(default_factory=list)
