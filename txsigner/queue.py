"""SQS transport for inbound signing requests and the outbound signed-transaction relay."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .config import SignerSettings
from .errors import DecodeError
from .models import SignedOutboundItem, SigningRequest

logger = logging.getLogger(__name__)


class QueueError(RuntimeError):
    pass


class OutboundRelay(Protocol):
    def add(self, item: SignedOutboundItem, timeout: Optional[float] = None) -> None: ...


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str


def parse_signing_request(body: Union[str, bytes, None], *, message_id: Optional[str] = None) -> SigningRequest:
    """Decode a queue body into a request, raising ``DecodeError`` for anything malformed."""
    if body is None:
        raise DecodeError("queue message has no body", message_id=message_id)
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise DecodeError("could not decode message from the queue", message_id=message_id) from exc
    if not isinstance(payload, dict):
        raise DecodeError("queue message body must be a JSON object", message_id=message_id)
    try:
        return SigningRequest.model_validate(payload)
    except ValidationError as exc:
        raise DecodeError(
            f"queue message is not a signing request: {exc.error_count()} invalid field(s)",
            request_id=str(payload.get("id") or "") or None,
            transaction_id=str(payload.get("transaction_id") or "") or None,
            message_id=message_id,
        ) from exc


def sqs_client(
    settings: SignerSettings, *, read_timeout: Optional[float] = None, connect_timeout: Optional[float] = None
):
    config = Config(
        connect_timeout=connect_timeout or settings.transport_timeout_seconds,
        read_timeout=read_timeout or settings.transport_timeout_seconds,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    kwargs: dict[str, Any] = {"region_name": settings.sqs_region, "config": config}
    if settings.is_local:
        kwargs["endpoint_url"] = settings.sqs_localstack_endpoint
    return boto3.client("sqs", **kwargs)


def _queue_url(client: Any, queue_name: str) -> str:
    try:
        result = client.get_queue_url(QueueName=queue_name)
    except (BotoCoreError, ClientError) as exc:
        raise QueueError(f"could not resolve queue {queue_name}: {exc}") from exc
    return result["QueueUrl"]


class SqsRelay:
    """Hands signed transactions to the broadcast queue.

    botocore fixes timeouts per client, so a call that has less time left than
    ``timeout_seconds`` goes through a client built by ``client_factory`` with
    the shorter limit.
    """

    def __init__(
        self,
        client: Any,
        queue_url: str,
        *,
        timeout_seconds: float = 10.0,
        client_factory: Optional[Callable[[float], Any]] = None,
    ) -> None:
        self.client = client
        self.queue_url = queue_url
        self.timeout_seconds = timeout_seconds
        self.client_factory = client_factory

    @classmethod
    def from_settings(
        cls,
        settings: SignerSettings,
        client: Any = None,
        client_factory: Optional[Callable[[float], Any]] = None,
    ) -> "SqsRelay":
        if not settings.sqs_write_queue_name:
            raise QueueError("please provide the name of the queue to write to")
        if client is None:
            client = sqs_client(settings)
            client_factory = client_factory or (
                lambda seconds: sqs_client(settings, read_timeout=seconds, connect_timeout=seconds)
            )
        return cls(
            client,
            _queue_url(client, settings.sqs_write_queue_name),
            timeout_seconds=settings.transport_timeout_seconds,
            client_factory=client_factory,
        )

    def _client_for(self, timeout: Optional[float]) -> Any:
        if timeout is None or self.client_factory is None or timeout >= self.timeout_seconds:
            return self.client
        return self.client_factory(timeout)

    def add(self, item: SignedOutboundItem, timeout: Optional[float] = None) -> None:
        try:
            self._client_for(timeout).send_message(QueueUrl=self.queue_url, MessageBody=item.to_json())
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"could not add item {item.id} to the queue: {exc}") from exc
        logger.debug("Queued signed transaction %s", item.transaction_id or item.id)


class SqsConsumer:
    """Receives signing requests one at a time and deletes them once handled."""

    def __init__(self, client: Any, queue_url: str, wait_seconds: int = 20) -> None:
        self.client = client
        self.queue_url = queue_url
        self.wait_seconds = wait_seconds

    @classmethod
    def from_settings(cls, settings: SignerSettings, client: Any = None) -> "SqsConsumer":
        if not settings.sqs_read_queue_name:
            raise QueueError("please provide the name of the queue to read from")
        client = client or sqs_client(
            settings,
            read_timeout=settings.sqs_wait_seconds + settings.transport_timeout_seconds,
        )
        return cls(client, _queue_url(client, settings.sqs_read_queue_name), settings.sqs_wait_seconds)

    def receive(self) -> Optional[QueueMessage]:
        try:
            result = self.client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=self.wait_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"could not receive from the queue: {exc}") from exc
        messages = result.get("Messages") or []
        if not messages:
            return None
        raw = messages[0]
        return QueueMessage(
            message_id=str(raw.get("MessageId") or ""),
            receipt_handle=str(raw.get("ReceiptHandle") or ""),
            body=raw.get("Body") or "",
        )

    def ack(self, message: QueueMessage) -> None:
        try:
            self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt_handle)
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"could not delete message {message.message_id}: {exc}") from exc
