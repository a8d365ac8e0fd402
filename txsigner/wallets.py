"""Wallet directory: resolves signing identities and their derivation paths."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .db import limit_statement_time, make_engine
from .models import DerivationPath, Wallet
from .observability import call_timeout

logger = logging.getLogger(__name__)

WalletsBase = declarative_base()


class WalletStoreError(Exception):
    """Raised when the wallet directory cannot answer a lookup."""


class UnknownWalletError(WalletStoreError):
    pass


class UnknownDerivationPathError(WalletStoreError):
    pass


class WalletResolver(Protocol):
    def get_wallet(self, wallet_id: int, timeout: Optional[float] = None) -> Wallet: ...

    def get_derivation_path(self, key_id: str, timeout: Optional[float] = None) -> DerivationPath: ...

    def close(self) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SenderWalletRow(WalletsBase):
    __tablename__ = "sender_wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    address = Column(String(128), nullable=False)
    chain_id = Column(Integer, nullable=False, default=0)
    key_id = Column(String(256), nullable=False, index=True)
    is_multisig = Column(Boolean, nullable=False, default=False)
    address_index = Column(Integer, nullable=False, default=0)
    multisig_threshold = Column(Integer, nullable=True)
    created = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_wallet(self) -> Wallet:
        return Wallet(
            id=int(self.id),
            user_id=self.user_id,
            address=self.address,
            chain_id=self.chain_id,
            key_id=self.key_id,
            is_multisig=bool(self.is_multisig),
            address_index=int(self.address_index or 0),
            multisig_threshold=self.multisig_threshold,
            created=self.created,
            updated=self.updated,
        )


class DerivationPathRow(WalletsBase):
    __tablename__ = "derivation_paths"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("sender_wallets.id"), nullable=True, index=True)
    purpose = Column(Integer, nullable=False)
    coin_type = Column(Integer, nullable=False)
    account = Column(Integer, nullable=False)
    change = Column(Integer, nullable=False)
    created = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_derivation_path(self) -> DerivationPath:
        return DerivationPath(
            id=int(self.id),
            wallet_id=self.wallet_id,
            purpose=int(self.purpose),
            coin_type=int(self.coin_type),
            account=int(self.account),
            change=int(self.change),
            created=self.created,
            updated=self.updated,
        )


class SqlWalletDirectory:
    """Read-only access to the wallets database."""

    def __init__(self, engine: Engine, timeout_seconds: float = 10.0) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float, echo: bool = False) -> "SqlWalletDirectory":
        return cls(make_engine(url, timeout_seconds=timeout_seconds, echo=echo), timeout_seconds)

    def create_schema(self) -> None:
        WalletsBase.metadata.create_all(self.engine)

    def get_wallet(self, wallet_id: int, timeout: Optional[float] = None) -> Wallet:
        try:
            with self._sessions() as session:
                limit_statement_time(session, call_timeout(self.timeout_seconds, timeout))
                row: Optional[SenderWalletRow] = session.get(SenderWalletRow, wallet_id)
                if row is None:
                    raise UnknownWalletError(f"wallet {wallet_id} not found")
                return row.to_wallet()
        except SQLAlchemyError as exc:
            raise WalletStoreError(f"could not fetch wallet {wallet_id}: {exc}") from exc

    def get_derivation_path(self, key_id: str, timeout: Optional[float] = None) -> DerivationPath:
        stmt = (
            select(DerivationPathRow)
            .join(SenderWalletRow, SenderWalletRow.id == DerivationPathRow.wallet_id)
            .where(SenderWalletRow.key_id == key_id)
            .order_by(DerivationPathRow.id)
            .limit(1)
        )
        try:
            with self._sessions() as session:
                limit_statement_time(session, call_timeout(self.timeout_seconds, timeout))
                row = session.execute(stmt).scalars().first()
                if row is None:
                    raise UnknownDerivationPathError(f"derivation path for key {key_id} not found")
                return row.to_derivation_path()
        except SQLAlchemyError as exc:
            raise WalletStoreError(f"could not fetch derivation path for key {key_id}: {exc}") from exc

    def close(self) -> None:
        self.engine.dispose()
        logger.debug("Disposed wallets engine")
