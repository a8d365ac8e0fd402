import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CHAIN_ID", "614")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from txsigner.codec import LEGACY_TX_TYPE, Transaction  # noqa: E402
from txsigner.models import DerivationPath, Wallet  # noqa: E402
from txsigner.pipeline import SigningPipeline  # noqa: E402
from txsigner.wallets import UnknownDerivationPathError, UnknownWalletError  # noqa: E402

CHAIN_ID = 614
RECIPIENT = bytes.fromhex("11" * 20)


class FakeWalletDirectory:
    def __init__(self, calls, wallets=None, paths=None):
        self.calls = calls
        self.wallets = dict(wallets or {})
        self.paths = dict(paths or {})
        self.wallet_error = None
        self.path_error = None
        self.close_error = None
        self.timeouts = []

    def get_wallet(self, wallet_id, timeout=None):
        self.calls.append(("wallets", "get_wallet", wallet_id))
        self.timeouts.append(timeout)
        if self.wallet_error is not None:
            raise self.wallet_error
        try:
            return self.wallets[wallet_id]
        except KeyError:
            raise UnknownWalletError(f"wallet {wallet_id} not found") from None

    def get_derivation_path(self, key_id, timeout=None):
        self.calls.append(("wallets", "get_derivation_path", key_id))
        self.timeouts.append(timeout)
        if self.path_error is not None:
            raise self.path_error
        try:
            return self.paths[key_id]
        except KeyError:
            raise UnknownDerivationPathError(f"derivation path for key {key_id} not found") from None

    def close(self):
        self.calls.append(("wallets", "close", None))
        if self.close_error is not None:
            raise self.close_error


class FakeSigner:
    """Attaches a dummy EIP-155 signature without touching any key material."""

    def __init__(self, calls, chain_id=CHAIN_ID):
        self.calls = calls
        self.chain_id = chain_id
        self.error = None
        self.on_sign = None
        self.signed = []
        self.timeouts = []

    def sign(self, tx, key_id, derivation_path, timeout=None):
        self.calls.append(("signer", "sign", (key_id, tuple(derivation_path))))
        self.timeouts.append(timeout)
        if self.on_sign is not None:
            self.on_sign()
        if self.error is not None:
            raise self.error
        if tx.tx_type == LEGACY_TX_TYPE:
            signed = replace(tx, v=self.chain_id * 2 + 35, r=1, s=2)
        else:
            signed = replace(tx, declared_chain_id=self.chain_id, v=0, r=1, s=2)
        self.signed.append(signed)
        return signed


class FakeLedger:
    def __init__(self, calls):
        self.calls = calls
        self.records = []
        self.errors = []
        self.close_error = None
        self.timeouts = []

    def create_transaction(self, record, timeout=None):
        self.calls.append(("ledger", "create_transaction", record.trx_hash))
        self.timeouts.append(timeout)
        if self.errors:
            raise self.errors.pop(0)
        now = datetime.now(timezone.utc)
        stored = replace(record, id=len(self.records) + 1, created=now, updated=now)
        self.records.append(stored)
        return stored

    def close(self):
        self.calls.append(("ledger", "close", None))
        if self.close_error is not None:
            raise self.close_error


class FakeRelay:
    def __init__(self, calls):
        self.calls = calls
        self.items = []
        self.error = None
        self.timeouts = []

    def add(self, item, timeout=None):
        self.calls.append(("relay", "add", item.transaction_id))
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        self.items.append(item)


def make_unsigned_tx(**overrides) -> Transaction:
    fields = dict(
        tx_type=LEGACY_TX_TYPE,
        nonce=3,
        gas_price=2_000_000_000,
        gas=21_000,
        to=RECIPIENT,
        value=10**18,
    )
    fields.update(overrides)
    return Transaction(**fields)


@pytest.fixture()
def calls():
    return []


@pytest.fixture()
def wallets(calls):
    return FakeWalletDirectory(
        calls,
        wallets={42: Wallet(id=42, address="mara.eth", key_id="K1", address_index=0, chain_id=CHAIN_ID)},
        paths={"K1": DerivationPath(id=1, wallet_id=42, purpose=44, coin_type=614, account=4, change=0)},
    )


@pytest.fixture()
def signer(calls):
    return FakeSigner(calls)


@pytest.fixture()
def ledger(calls):
    return FakeLedger(calls)


@pytest.fixture()
def relay(calls):
    return FakeRelay(calls)


@pytest.fixture()
def pipeline(wallets, signer, ledger, relay):
    # Fake signatures cannot be recovered, and "mara.eth" is not a hex address.
    return SigningPipeline(wallets, signer, ledger, relay, chain_id=CHAIN_ID, verify_sender=False)


@pytest.fixture()
def unsigned_tx():
    return make_unsigned_tx()


@pytest.fixture()
def request_payload(unsigned_tx):
    return {
        "id": "req-1",
        "raw_tx": unsigned_tx.hex(),
        "transaction_id": "tx-1",
        "wallet_row_id": 42,
    }


@pytest.fixture()
def tx_factory():
    return make_unsigned_tx
