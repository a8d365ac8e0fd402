import pytest
from pydantic import ValidationError

from txsigner.config import DEFAULT_AWS_REGION, SignerSettings
from txsigner.models import NetworkType, TransferType


def make_settings(**overrides) -> SignerSettings:
    return SignerSettings(_env_file=None, **overrides)


def test_defaults():
    config = make_settings()

    assert config.sqs_region == DEFAULT_AWS_REGION
    assert config.signer_secret_region == DEFAULT_AWS_REGION
    assert config.network_type == NetworkType.MAINNET
    assert config.transfer_type == TransferType.EOA
    assert config.verify_sender is True
    assert config.is_local is False


def test_environment_variables_are_read(monkeypatch):
    monkeypatch.setenv("CHAIN_ID", "99")
    monkeypatch.setenv("SQS_WRITE_QUEUE_NAME", "signed-tx")
    monkeypatch.setenv("NETWORK_TYPE", "testnet")
    monkeypatch.setenv("VERIFY_SENDER", "false")

    config = make_settings()

    assert config.chain_id == 99
    assert config.sqs_write_queue_name == "signed-tx"
    assert config.network_type == NetworkType.TESTNET
    assert config.verify_sender is False


@pytest.mark.parametrize("value, expected", [("debug", "DEBUG"), (" warn ", "WARN"), ("Panic", "PANIC")])
def test_log_level_names_are_normalised(value, expected):
    assert make_settings(log_level=value).log_level == expected


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValidationError, match="LOG_LEVEL"):
        make_settings(log_level="verbose")


@pytest.mark.parametrize("chain_id", [0, -5])
def test_chain_id_must_be_positive(chain_id):
    with pytest.raises(ValidationError):
        make_settings(chain_id=chain_id)


def test_timeouts_must_be_positive():
    with pytest.raises(ValidationError):
        make_settings(transport_timeout_seconds=0)


def test_blank_optionals_become_none():
    config = make_settings(signer_secret_name="  ", wallets_database_url="")

    assert config.signer_secret_name is None
    assert config.wallets_database_url is None


def test_is_local_is_case_insensitive():
    assert make_settings(environment="LOCAL").is_local
    assert make_settings(environment="local").is_local


def test_mnemonic_is_refused_outside_local():
    with pytest.raises(ValidationError, match="SIGNER_MNEMONIC"):
        make_settings(environment="production", signer_mnemonic="test " * 11 + "junk")
