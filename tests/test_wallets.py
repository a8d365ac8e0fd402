from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from txsigner.wallets import (
    DerivationPathRow,
    SenderWalletRow,
    SqlWalletDirectory,
    UnknownDerivationPathError,
    UnknownWalletError,
    WalletStoreError,
)


@pytest.fixture()
def directory(tmp_path: Path):
    directory = SqlWalletDirectory.from_url(f"sqlite:///{tmp_path / 'wallets.db'}", timeout_seconds=5)
    directory.create_schema()
    with Session(directory.engine) as session:
        wallet = SenderWalletRow(id=42, address="mara.eth", chain_id=614, key_id="K1", address_index=7)
        session.add(wallet)
        session.flush()
        session.add(DerivationPathRow(id=10, wallet_id=42, purpose=44, coin_type=614, account=4, change=0))
        session.add(DerivationPathRow(id=11, wallet_id=42, purpose=44, coin_type=614, account=5, change=1))
        session.commit()
    yield directory
    directory.close()


def test_get_wallet_maps_row(directory):
    wallet = directory.get_wallet(42)

    assert wallet.id == 42
    assert wallet.address == "mara.eth"
    assert wallet.key_id == "K1"
    assert wallet.address_index == 7
    assert wallet.is_multisig is False
    assert wallet.created is not None


def test_unknown_wallet_is_distinct_from_store_failure(directory):
    with pytest.raises(UnknownWalletError):
        directory.get_wallet(999)


def test_derivation_path_is_found_by_key_id(directory):
    path = directory.get_derivation_path("K1")

    assert path.id == 10
    assert (path.purpose, path.coin_type, path.account, path.change) == (44, 614, 4, 0)
    assert path.wallet_id == 42


def test_unknown_key_has_no_derivation_path(directory):
    with pytest.raises(UnknownDerivationPathError):
        directory.get_derivation_path("K404")


def test_missing_schema_is_a_store_failure(tmp_path: Path):
    directory = SqlWalletDirectory.from_url(f"sqlite:///{tmp_path / 'empty.db'}", timeout_seconds=5)

    with pytest.raises(WalletStoreError) as excinfo:
        directory.get_wallet(1)

    assert not isinstance(excinfo.value, UnknownWalletError)
    directory.close()


def test_directory_is_usable_after_close(directory):
    directory.close()

    assert directory.get_wallet(42).key_id == "K1"


def test_lookups_are_bounded_by_the_shorter_timeout(directory, monkeypatch):
    limits = []
    monkeypatch.setattr("txsigner.wallets.limit_statement_time", lambda session, seconds: limits.append(seconds))

    directory.get_wallet(42, timeout=0.2)
    directory.get_derivation_path("K1", timeout=60)
    directory.get_wallet(42)

    assert limits == [0.2, 5, 5]
