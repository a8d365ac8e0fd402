import json

import pytest

from txsigner import main as worker
from txsigner.config import SignerSettings
from txsigner.queue import QueueError, QueueMessage


class StubConsumer:
    queue_url = "https://sqs/created-tx"
    wait_seconds = 0

    def __init__(self, messages=(), receive_error=None):
        self.messages = list(messages)
        self.receive_error = receive_error
        self.acked = []

    def receive(self):
        if self.receive_error is not None:
            raise self.receive_error
        return self.messages.pop(0) if self.messages else None

    def ack(self, message):
        self.acked.append(message.message_id)


def make_message(payload, message_id="msg-1"):
    return QueueMessage(message_id=message_id, receipt_handle=f"rh-{message_id}", body=json.dumps(payload))


def test_successful_message_is_acked(pipeline, relay, request_payload):
    consumer = StubConsumer()

    assert worker.handle_message(pipeline, consumer, make_message(request_payload), timeout_seconds=30)
    assert consumer.acked == ["msg-1"]
    assert relay.items[0].id == "msg-1"


def test_failed_message_is_left_for_redelivery(pipeline, ledger, request_payload):
    request_payload["wallet_row_id"] = 999
    consumer = StubConsumer()

    assert not worker.handle_message(pipeline, consumer, make_message(request_payload))
    assert consumer.acked == []
    assert ledger.records == []


def test_undecodable_message_is_left_for_redelivery(pipeline, calls):
    consumer = StubConsumer()
    message = QueueMessage(message_id="msg-2", receipt_handle="rh-2", body="{")

    assert not worker.handle_message(pipeline, consumer, message)
    assert consumer.acked == []
    assert calls == []


def test_run_once_processes_a_single_message(pipeline, ledger, request_payload):
    consumer = StubConsumer([make_message(request_payload, "msg-1"), make_message(request_payload, "msg-2")])

    signed = worker.run_forever(pipeline, consumer, SignerSettings(_env_file=None), once=True)

    assert signed == 1
    assert consumer.acked == ["msg-1"]
    assert len(consumer.messages) == 1


def test_run_once_with_empty_queue(pipeline):
    assert worker.run_forever(pipeline, StubConsumer(), SignerSettings(_env_file=None), once=True) == 0


def test_run_once_surfaces_queue_errors(pipeline):
    consumer = StubConsumer(receive_error=QueueError("throttled"))

    with pytest.raises(QueueError):
        worker.run_forever(pipeline, consumer, SignerSettings(_env_file=None), once=True)


def test_main_fails_fast_without_databases(monkeypatch):
    monkeypatch.setattr(worker, "settings", SignerSettings(_env_file=None))

    assert worker.main(["--once", "--skip-chain-check"]) == 1


def test_main_runs_one_iteration(monkeypatch, pipeline):
    consumer = StubConsumer()
    monkeypatch.setattr(worker, "settings", SignerSettings(_env_file=None, chain_rpc_url="http://rpc"))
    monkeypatch.setattr(worker, "build_pipeline", lambda config: pipeline)
    monkeypatch.setattr(worker.SqsConsumer, "from_settings", classmethod(lambda cls, config: consumer))

    assert worker.main(["--once", "--skip-chain-check"]) == 0
