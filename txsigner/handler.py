"""Lambda-style entrypoint: one SQS record per invocation."""
from __future__ import annotations

import logging
from typing import Any, Optional

from .config import SignerSettings, settings
from .errors import DecodeError
from .ledger import SqlTransactionLedger
from .observability import InvocationContext, configure_logging
from .pipeline import SigningPipeline
from .queue import SqsRelay, parse_signing_request
from .signer import build_signer
from .wallets import SqlWalletDirectory

logger = logging.getLogger(__name__)

_pipeline: Optional[SigningPipeline] = None


def build_pipeline(config: SignerSettings) -> SigningPipeline:
    """Wire the production collaborators described by ``config``."""
    if not config.wallets_database_url:
        raise ValueError("please set WALLETS_DATABASE_URL in the environment as it is a required value")
    if not config.transactions_database_url:
        raise ValueError("please set TRANSACTIONS_DATABASE_URL in the environment as it is a required value")

    wallets = SqlWalletDirectory.from_url(
        config.wallets_database_url,
        timeout_seconds=config.transport_timeout_seconds,
        echo=config.is_local,
    )
    ledger = SqlTransactionLedger.from_url(
        config.transactions_database_url,
        timeout_seconds=config.transport_timeout_seconds,
        echo=config.is_local,
    )
    return SigningPipeline(
        wallets=wallets,
        signer=build_signer(config),
        ledger=ledger,
        relay=SqsRelay.from_settings(config),
        chain_id=config.chain_id,
        network_type=config.network_type,
        transfer_type=config.transfer_type,
        verify_sender=config.verify_sender,
    )


def get_pipeline() -> SigningPipeline:
    global _pipeline
    if _pipeline is None:
        configure_logging(settings.log_level)
        _pipeline = build_pipeline(settings)
        logger.info("Initialised %s for chain %s", settings.service_name, settings.chain_id)
    return _pipeline


def lambda_handler(event: Optional[dict[str, Any]], context: Any) -> dict[str, Any]:
    records = (event or {}).get("Records") or []
    if not records:
        return {"processed": 0}

    record = records[0]
    ctx = InvocationContext.from_lambda(context)
    message_id = record.get("messageId") or record.get("MessageId")
    try:
        request = parse_signing_request(record.get("body"), message_id=message_id)
    except DecodeError as exc:
        ctx.logger.error("could not decode queue item: %s", exc)
        raise
    outcome = get_pipeline().process(request, message_id=message_id, context=ctx)
    return {
        "processed": 1,
        "trx_hash": outcome.record.trx_hash,
        "warnings": [str(warning) for warning in outcome.warnings],
    }
