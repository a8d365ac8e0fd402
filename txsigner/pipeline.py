"""Signing pipeline: turns one queued signing request into a recorded, relayed signed transaction."""
from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account import Account

from .amounts import AmountOverflowError, wei_to_amount
from .codec import Transaction, TransactionDecodeError, decode_transaction_hex
from .derivation import assemble_coordinates
from .errors import (
    AmountConversionError,
    DecodeError,
    DerivationPathNotFound,
    PersistError,
    PipelineError,
    RelayError,
    ResolverError,
    SigningFailed,
    Step,
    TeardownWarning,
    WalletNotFound,
)
from .ledger import TransactionLedger
from .models import (
    DerivationPath,
    NetworkType,
    SignedOutboundItem,
    SigningOutcome,
    SigningRequest,
    State,
    TransactionRecord,
    TransferType,
    Wallet,
)
from .observability import InvocationContext
from .queue import OutboundRelay
from .signer import SigningDelegate
from .wallets import UnknownDerivationPathError, UnknownWalletError, WalletResolver

logger = logging.getLogger(__name__)


class SigningPipeline:
    """Runs decode, resolve, sign, persist and relay strictly in order.

    Each step only starts once the previous one succeeded. The first failure is
    raised as a ``PipelineError`` naming its step; nothing already written is
    rolled back. Redelivery of the same request signs again and writes a second
    ledger row.
    Each external call is given the time left before the invocation deadline,
    and the collaborator caps it at its own transport timeout.
    """

    def __init__(
        self,
        wallets: WalletResolver,
        signer: SigningDelegate,
        ledger: TransactionLedger,
        relay: OutboundRelay,
        *,
        chain_id: int,
        network_type: NetworkType = NetworkType.MAINNET,
        transfer_type: TransferType = TransferType.EOA,
        verify_sender: bool = True,
    ) -> None:
        self.wallets = wallets
        self.signer = signer
        self.ledger = ledger
        self.relay = relay
        self.chain_id = chain_id
        self.network_type = network_type
        self.transfer_type = transfer_type
        self.verify_sender = verify_sender

    def process(
        self,
        request: SigningRequest,
        *,
        message_id: Optional[str] = None,
        context: Optional[InvocationContext] = None,
    ) -> SigningOutcome:
        ctx = context or InvocationContext.create(logger=logger)
        ids: dict[str, Any] = {
            "request_id": request.id or None,
            "transaction_id": request.transaction_id or None,
            "message_id": message_id,
        }
        ctx.bind(**ids)
        try:
            outcome = self._run(request, message_id, ctx, ids)
        except PipelineError as exc:
            ctx.logger.error("Signing failed at %s: %s", exc.step.value, exc)
            raise
        ctx.logger.info("Signed transaction %s", outcome.record.trx_hash)
        return outcome

    def _run(
        self,
        request: SigningRequest,
        message_id: Optional[str],
        ctx: InvocationContext,
        ids: dict[str, Any],
    ) -> SigningOutcome:
        ctx.ensure_active(Step.DECODE, **ids)
        tx = self._decode(request, ids)

        remaining = ctx.ensure_active(Step.RESOLVE_WALLET, **ids)
        wallet = self._resolve_wallet(request.wallet_reference, remaining, ids)
        ctx.bind(key_id=wallet.key_id)

        remaining = ctx.ensure_active(Step.RESOLVE_DERIVATION_PATH, **ids)
        path = self._resolve_derivation_path(wallet, remaining, ids)
        try:
            coordinates = assemble_coordinates(path, wallet)
        except ValueError as exc:
            raise ResolverError(str(exc), step=Step.RESOLVE_DERIVATION_PATH, **ids) from exc
        ctx.logger.debug("Resolved derivation path %s", coordinates)

        remaining = ctx.ensure_active(Step.SIGN, **ids)
        signed = self._sign(tx, wallet, coordinates, remaining, ids)

        ctx.ensure_active(Step.DERIVE_RECORD, **ids)
        record = self._derive_record(signed, wallet, ids)

        remaining = ctx.ensure_active(Step.PERSIST, **ids)
        try:
            stored = self.ledger.create_transaction(record, timeout=remaining)
        except Exception as exc:
            raise PersistError(f"could not create transaction: {exc}", **ids) from exc
        ctx.logger.debug("Recorded transaction row %s", stored.id)

        item = SignedOutboundItem(
            id=message_id or request.id,
            signed_tx=signed.hex(),
            transaction_id=request.transaction_id,
        )
        remaining = ctx.ensure_active(Step.RELAY, **ids)
        try:
            self.relay.add(item, timeout=remaining)
        except Exception as exc:
            raise RelayError(f"could not add signed item to the queue: {exc}", **ids) from exc

        return SigningOutcome(record=stored, item=item, warnings=self._teardown(ctx, ids))

    def _decode(self, request: SigningRequest, ids: dict[str, Any]) -> Transaction:
        try:
            return decode_transaction_hex(request.raw_transaction_hex)
        except TransactionDecodeError as exc:
            raise DecodeError(f"could not decode raw transaction: {exc}", **ids) from exc

    def _resolve_wallet(self, wallet_reference: int, timeout: Optional[float], ids: dict[str, Any]) -> Wallet:
        try:
            return self.wallets.get_wallet(wallet_reference, timeout=timeout)
        except UnknownWalletError as exc:
            raise WalletNotFound(f"wallet {wallet_reference} not found", **ids) from exc
        except Exception as exc:
            raise ResolverError(
                f"could not fetch wallet {wallet_reference}: {exc}", step=Step.RESOLVE_WALLET, **ids
            ) from exc

    def _resolve_derivation_path(
        self, wallet: Wallet, timeout: Optional[float], ids: dict[str, Any]
    ) -> DerivationPath:
        try:
            return self.wallets.get_derivation_path(wallet.key_id, timeout=timeout)
        except UnknownDerivationPathError as exc:
            raise DerivationPathNotFound(f"derivation path for key {wallet.key_id} not found", **ids) from exc
        except Exception as exc:
            raise ResolverError(
                f"could not fetch derivation path for key {wallet.key_id}: {exc}",
                step=Step.RESOLVE_DERIVATION_PATH,
                **ids,
            ) from exc

    def _sign(
        self,
        tx: Transaction,
        wallet: Wallet,
        coordinates: list[int],
        timeout: Optional[float],
        ids: dict[str, Any],
    ) -> Transaction:
        # Single attempt; queue redelivery is the only retry.
        try:
            signed = self.signer.sign(tx, wallet.key_id, coordinates, timeout=timeout)
        except Exception as exc:
            raise SigningFailed(f"could not sign transaction {tx.hash}: {exc}", **ids) from exc
        if not signed.is_signed:
            raise SigningFailed("signer returned an unsigned transaction", **ids)
        if signed.chain_id != self.chain_id:
            raise SigningFailed(
                f"signed transaction chain id {signed.chain_id} does not match configured {self.chain_id}", **ids
            )
        if self.verify_sender:
            try:
                sender = Account.recover_transaction(signed.encode())
            except Exception as exc:
                raise SigningFailed(f"could not recover sender of signed transaction: {exc}", **ids) from exc
            if sender.lower() != wallet.address.lower():
                raise SigningFailed(f"signed by {sender}, expected wallet address {wallet.address}", **ids)
        return signed

    def _derive_record(self, signed: Transaction, wallet: Wallet, ids: dict[str, Any]) -> TransactionRecord:
        try:
            amount = wei_to_amount(signed.value)
        except AmountOverflowError as exc:
            raise AmountConversionError(f"could not parse amount: {exc}", **ids) from exc
        return TransactionRecord(
            trx_hash=signed.hash,
            chain_id=self.chain_id,
            sender_address=wallet.address,
            recipient_address=signed.recipient,
            amount=amount,
            nonce=signed.nonce,
            state=State.SIGNED,
            network_type=self.network_type,
            transfer_type=self.transfer_type,
            max_fee=signed.max_fee,
            max_priority_fee=signed.max_priority_fee,
            is_sender_paying_gas=False,
        )

    def _teardown(self, ctx: InvocationContext, ids: dict[str, Any]) -> list[Exception]:
        warnings: list[Exception] = []
        for name, resource in (("wallets", self.wallets), ("ledger", self.ledger)):
            try:
                resource.close()
            except Exception as exc:
                warning = TeardownWarning(f"could not close {name}: {exc}", **ids)
                warning.__cause__ = exc
                ctx.logger.warning("%s", warning)
                warnings.append(warning)
        return warnings
