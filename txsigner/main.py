"""CLI entrypoint for the long-running signing worker."""
from __future__ import annotations

import argparse
import logging
import time
from typing import Optional, Sequence

from .chain import ChainMismatchError, verify_chain_id
from .config import SignerSettings, settings
from .errors import PipelineError
from .handler import build_pipeline
from .observability import InvocationContext, configure_logging
from .pipeline import SigningPipeline
from .queue import QueueError, QueueMessage, SqsConsumer, parse_signing_request
from .signer import SignerError

logger = logging.getLogger(__name__)

RECEIVE_ERROR_BACKOFF_SECONDS = 5.0


def handle_message(
    pipeline: SigningPipeline,
    consumer: SqsConsumer,
    message: QueueMessage,
    *,
    timeout_seconds: Optional[float] = None,
) -> bool:
    """Process one message and delete it only if the pipeline succeeded.

    A failed message stays on the queue and is redelivered after its
    visibility timeout.
    """
    ctx = InvocationContext.create(
        invocation_id=message.message_id or None,
        timeout_seconds=timeout_seconds,
        logger=logging.getLogger("txsigner.pipeline"),
    )
    try:
        request = parse_signing_request(message.body, message_id=message.message_id)
        pipeline.process(request, message_id=message.message_id, context=ctx)
    except PipelineError as exc:
        ctx.logger.warning("Leaving message for redelivery: %s", exc)
        return False
    consumer.ack(message)
    return True


def run_forever(
    pipeline: SigningPipeline,
    consumer: SqsConsumer,
    config: SignerSettings,
    *,
    once: bool = False,
) -> int:
    """Blocking loop that handles one message at a time. Returns the number signed."""
    logger.info("Polling %s (wait=%ss)", consumer.queue_url, consumer.wait_seconds)
    signed = 0
    try:
        while True:
            try:
                message = consumer.receive()
                if message is not None and handle_message(
                    pipeline,
                    consumer,
                    message,
                    timeout_seconds=config.invocation_timeout_seconds,
                ):
                    signed += 1
            except QueueError as exc:
                logger.error("Queue error: %s", exc)
                if once:
                    raise
                time.sleep(RECEIVE_ERROR_BACKOFF_SECONDS)
            if once:
                return signed
    except KeyboardInterrupt:
        logger.info("Worker stopped via keyboard interrupt")
    return signed


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="txsigner-worker", description="Sign queued transactions one at a time")
    ap.add_argument("--once", action="store_true", help="Receive at most one message, then exit")
    ap.add_argument(
        "--skip-chain-check",
        action="store_true",
        help="Do not compare CHAIN_ID with the chain id served by CHAIN_RPC_URL",
    )
    args = ap.parse_args(argv)

    configure_logging(settings.log_level)
    logger.info("Starting %s (environment=%s chain_id=%s)", settings.service_name, settings.environment, settings.chain_id)

    try:
        if settings.chain_rpc_url and not args.skip_chain_check:
            verify_chain_id(settings.chain_rpc_url, settings.chain_id, settings.transport_timeout_seconds)
        pipeline = build_pipeline(settings)
        consumer = SqsConsumer.from_settings(settings)
    except (ChainMismatchError, QueueError, SignerError, ValueError) as exc:
        logger.error("Could not start worker: %s", exc)
        return 1

    try:
        run_forever(pipeline, consumer, settings, once=args.once)
    except QueueError:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
