"""Wire codec for the chain's native transaction encoding.

Three shapes are supported: legacy RLP lists (nine fields, ``v = r = s = 0``
while unsigned), EIP-2930 access list envelopes (``0x01 || rlp(...)``, eleven
fields) and EIP-1559 dynamic fee envelopes (``0x02 || rlp(...)``, twelve
fields). Typed envelopes wrapped in an RLP byte string, as some
producers emit them, are unwrapped on decode; encoding always produces the
canonical form, so canonical bytes survive a decode/encode round trip
unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

import rlp
from eth_utils import keccak, to_checksum_address
from rlp.exceptions import RLPException
from rlp.sedes import Binary, CountableList, List, big_endian_int, binary

LEGACY_TX_TYPE = 0
ACCESS_LIST_TX_TYPE = 1
DYNAMIC_FEE_TX_TYPE = 2

# EIP-155: v = chain_id * 2 + 35 + y_parity
EIP155_V_OFFSET = 35

address = Binary.fixed_length(20, allow_empty=True)
access_list_sedes = CountableList(
    List([Binary.fixed_length(20), CountableList(Binary.fixed_length(32))])
)

AccessList = tuple[tuple[bytes, tuple[bytes, ...]], ...]


class TransactionDecodeError(ValueError):
    """Raised when a payload is not valid hex or not a supported transaction."""


class _LegacyPayload(rlp.Serializable):
    fields = [
        ("nonce", big_endian_int),
        ("gas_price", big_endian_int),
        ("gas", big_endian_int),
        ("to", address),
        ("value", big_endian_int),
        ("data", binary),
        ("v", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]


class _AccessListPayload(rlp.Serializable):
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("gas_price", big_endian_int),
        ("gas", big_endian_int),
        ("to", address),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]


class _DynamicFeePayload(rlp.Serializable):
    fields = [
        ("chain_id", big_endian_int),
        ("nonce", big_endian_int),
        ("max_priority_fee_per_gas", big_endian_int),
        ("max_fee_per_gas", big_endian_int),
        ("gas", big_endian_int),
        ("to", address),
        ("value", big_endian_int),
        ("data", binary),
        ("access_list", access_list_sedes),
        ("y_parity", big_endian_int),
        ("r", big_endian_int),
        ("s", big_endian_int),
    ]


@dataclass(frozen=True)
class Transaction:
    """A decoded transaction, unsigned until ``r``/``s`` are populated."""

    tx_type: int
    nonce: int
    gas: int
    to: Optional[bytes]
    value: int
    data: bytes = b""
    gas_price: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    access_list: AccessList = ()
    declared_chain_id: Optional[int] = None
    v: int = 0
    r: int = 0
    s: int = 0

    @property
    def is_signed(self) -> bool:
        return self.r != 0 or self.s != 0

    @property
    def chain_id(self) -> Optional[int]:
        """Chain id carried by the transaction, or None for unprotected legacy ones."""
        if self.tx_type != LEGACY_TX_TYPE:
            return self.declared_chain_id
        if self.v >= EIP155_V_OFFSET:
            return (self.v - EIP155_V_OFFSET) // 2
        return None

    @property
    def recipient(self) -> Optional[str]:
        if not self.to:
            return None
        return to_checksum_address(self.to)

    @property
    def max_fee(self) -> int:
        if self.tx_type == DYNAMIC_FEE_TX_TYPE:
            return self.max_fee_per_gas
        return self.gas_price

    @property
    def max_priority_fee(self) -> int:
        if self.tx_type == DYNAMIC_FEE_TX_TYPE:
            return self.max_priority_fee_per_gas
        return self.gas_price

    @property
    def hash(self) -> str:
        return "0x" + keccak(self.encode()).hex()

    def encode(self) -> bytes:
        if self.tx_type == DYNAMIC_FEE_TX_TYPE:
            payload = _DynamicFeePayload(
                chain_id=self.declared_chain_id or 0,
                nonce=self.nonce,
                max_priority_fee_per_gas=self.max_priority_fee_per_gas,
                max_fee_per_gas=self.max_fee_per_gas,
                gas=self.gas,
                to=self.to or b"",
                value=self.value,
                data=self.data,
                access_list=self.access_list,
                y_parity=self.v,
                r=self.r,
                s=self.s,
            )
            return bytes([DYNAMIC_FEE_TX_TYPE]) + rlp.encode(payload)
        if self.tx_type == ACCESS_LIST_TX_TYPE:
            payload = _AccessListPayload(
                chain_id=self.declared_chain_id or 0,
                nonce=self.nonce,
                gas_price=self.gas_price,
                gas=self.gas,
                to=self.to or b"",
                value=self.value,
                data=self.data,
                access_list=self.access_list,
                y_parity=self.v,
                r=self.r,
                s=self.s,
            )
            return bytes([ACCESS_LIST_TX_TYPE]) + rlp.encode(payload)
        payload = _LegacyPayload(
            nonce=self.nonce,
            gas_price=self.gas_price,
            gas=self.gas,
            to=self.to or b"",
            value=self.value,
            data=self.data,
            v=self.v,
            r=self.r,
            s=self.s,
        )
        return rlp.encode(payload)

    def hex(self) -> str:
        return self.encode().hex()

    def unsigned(self) -> "Transaction":
        return replace(self, v=0, r=0, s=0)

    def same_payload(self, other: "Transaction") -> bool:
        """True when both transactions carry identical fields apart from the signature."""
        return self.unsigned() == other.unsigned()

    def to_signable_dict(self, chain_id: int) -> dict[str, Any]:
        """Field mapping understood by ``eth_account.Account.sign_transaction``."""
        tx: dict[str, Any] = {
            "chainId": chain_id,
            "nonce": self.nonce,
            "gas": self.gas,
            "value": self.value,
            "data": "0x" + self.data.hex(),
        }
        if self.to:
            tx["to"] = to_checksum_address(self.to)
        if self.tx_type == DYNAMIC_FEE_TX_TYPE:
            tx["maxFeePerGas"] = self.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
        else:
            tx["gasPrice"] = self.gas_price
        # eth_account picks type 1 from gasPrice plus accessList.
        if self.tx_type != LEGACY_TX_TYPE:
            tx["accessList"] = [
                {
                    "address": to_checksum_address(entry_address),
                    "storageKeys": ["0x" + key.hex() for key in storage_keys],
                }
                for entry_address, storage_keys in self.access_list
            ]
        return tx


def _from_legacy(payload: _LegacyPayload) -> Transaction:
    return Transaction(
        tx_type=LEGACY_TX_TYPE,
        nonce=payload.nonce,
        gas_price=payload.gas_price,
        gas=payload.gas,
        to=payload.to or None,
        value=payload.value,
        data=payload.data,
        v=payload.v,
        r=payload.r,
        s=payload.s,
    )


def _access_list(payload) -> AccessList:
    return tuple(
        (bytes(entry_address), tuple(bytes(key) for key in storage_keys))
        for entry_address, storage_keys in payload.access_list
    )


def _from_access_list(payload: _AccessListPayload) -> Transaction:
    return Transaction(
        tx_type=ACCESS_LIST_TX_TYPE,
        declared_chain_id=payload.chain_id,
        nonce=payload.nonce,
        gas_price=payload.gas_price,
        gas=payload.gas,
        to=payload.to or None,
        value=payload.value,
        data=payload.data,
        access_list=_access_list(payload),
        v=payload.y_parity,
        r=payload.r,
        s=payload.s,
    )


def _from_dynamic_fee(payload: _DynamicFeePayload) -> Transaction:
    return Transaction(
        tx_type=DYNAMIC_FEE_TX_TYPE,
        declared_chain_id=payload.chain_id,
        nonce=payload.nonce,
        max_priority_fee_per_gas=payload.max_priority_fee_per_gas,
        max_fee_per_gas=payload.max_fee_per_gas,
        gas=payload.gas,
        to=payload.to or None,
        value=payload.value,
        data=payload.data,
        access_list=_access_list(payload),
        v=payload.y_parity,
        r=payload.r,
        s=payload.s,
    )


def _decode_typed(raw: bytes) -> Transaction:
    tx_type = raw[0]
    if tx_type == ACCESS_LIST_TX_TYPE:
        return _from_access_list(rlp.decode(raw[1:], sedes=_AccessListPayload))
    if tx_type == DYNAMIC_FEE_TX_TYPE:
        return _from_dynamic_fee(rlp.decode(raw[1:], sedes=_DynamicFeePayload))
    raise TransactionDecodeError(f"unsupported transaction type 0x{tx_type:02x}")


def decode_transaction(raw: bytes) -> Transaction:
    if not raw:
        raise TransactionDecodeError("empty transaction payload")
    try:
        first = raw[0]
        if first >= 0xC0:
            return _from_legacy(rlp.decode(raw, sedes=_LegacyPayload))
        if first <= 0x7F:
            return _decode_typed(raw)
        inner = rlp.decode(raw, sedes=binary)
        if not inner or inner[0] > 0x7F:
            raise TransactionDecodeError("RLP byte string does not wrap a typed transaction")
        return _decode_typed(inner)
    except RLPException as exc:
        raise TransactionDecodeError(f"invalid transaction encoding: {exc}") from exc


def decode_transaction_hex(value: str) -> Transaction:
    candidate = value.strip()
    if candidate[:2].lower() == "0x":
        candidate = candidate[2:]
    try:
        raw = bytes.fromhex(candidate)
    except ValueError as exc:
        raise TransactionDecodeError("transaction payload is not valid hex") from exc
    return decode_transaction(raw)
