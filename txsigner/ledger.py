"""Transaction ledger backed by the transactions database."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .amounts import AMOUNT_PRECISION, AMOUNT_SCALE
from .db import limit_statement_time, make_engine
from .models import NetworkType, State, TransactionRecord, TransferType
from .observability import call_timeout

logger = logging.getLogger(__name__)

TransactionsBase = declarative_base()


class LedgerError(Exception):
    """Raised when a transaction row cannot be written."""


class DuplicateTransactionError(LedgerError):
    """Raised when the row collides with an existing key."""


class TransactionLedger(Protocol):
    def create_transaction(self, record: TransactionRecord, timeout: Optional[float] = None) -> TransactionRecord: ...

    def close(self) -> None: ...


class TransactionRow(TransactionsBase):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trx_hash = Column(String(66), nullable=False, index=True)
    chain_id = Column(Integer, nullable=False)
    network_type = Column(String(16), nullable=False)
    state = Column(String(16), nullable=False)
    transfer_type = Column(String(32), nullable=False)
    sender_address = Column(String(128), nullable=False)
    recipient_address = Column(String(128), nullable=True)
    amount = Column(Numeric(AMOUNT_PRECISION, AMOUNT_SCALE), nullable=False)
    nonce = Column(Integer, nullable=False)
    max_fee = Column(Numeric(78, 0), nullable=True)
    max_priority_fee = Column(Numeric(78, 0), nullable=True)
    is_sender_paying_gas = Column(Boolean, nullable=False, default=False)
    created = Column(DateTime(timezone=True), nullable=False)
    updated = Column(DateTime(timezone=True), nullable=False)

    def to_record(self) -> TransactionRecord:
        return TransactionRecord(
            id=int(self.id),
            trx_hash=self.trx_hash,
            chain_id=int(self.chain_id),
            network_type=NetworkType(self.network_type),
            state=State(self.state),
            transfer_type=TransferType(self.transfer_type),
            sender_address=self.sender_address,
            recipient_address=self.recipient_address,
            amount=self.amount,
            nonce=int(self.nonce),
            max_fee=int(self.max_fee or 0),
            max_priority_fee=int(self.max_priority_fee or 0),
            is_sender_paying_gas=bool(self.is_sender_paying_gas),
            created=self.created,
            updated=self.updated,
        )


class SqlTransactionLedger:
    """Insert-only writer for transaction lifecycle rows."""

    def __init__(self, engine: Engine, timeout_seconds: float = 10.0) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float, echo: bool = False) -> "SqlTransactionLedger":
        return cls(make_engine(url, timeout_seconds=timeout_seconds, echo=echo), timeout_seconds)

    def create_schema(self) -> None:
        TransactionsBase.metadata.create_all(self.engine)

    def create_transaction(self, record: TransactionRecord, timeout: Optional[float] = None) -> TransactionRecord:
        now = datetime.now(timezone.utc)
        row = TransactionRow(
            id=record.id,
            trx_hash=record.trx_hash,
            chain_id=record.chain_id,
            network_type=record.network_type.value,
            state=record.state.value,
            transfer_type=record.transfer_type.value,
            sender_address=record.sender_address,
            recipient_address=record.recipient_address,
            amount=record.amount,
            nonce=record.nonce,
            max_fee=record.max_fee,
            max_priority_fee=record.max_priority_fee,
            is_sender_paying_gas=record.is_sender_paying_gas,
            created=record.created or now,
            updated=record.updated or now,
        )
        try:
            with self._sessions.begin() as session:
                limit_statement_time(session, call_timeout(self.timeout_seconds, timeout))
                session.add(row)
                session.flush()
                stored = row.to_record()
        except IntegrityError as exc:
            raise DuplicateTransactionError(f"transaction {record.trx_hash} collides with an existing row") from exc
        except SQLAlchemyError as exc:
            raise LedgerError(f"could not create transaction {record.trx_hash}: {exc}") from exc
        return stored

    def close(self) -> None:
        self.engine.dispose()
        logger.debug("Disposed transactions engine")
