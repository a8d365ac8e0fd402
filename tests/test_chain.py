from types import SimpleNamespace

import pytest

from txsigner.chain import ChainMismatchError, verify_chain_id


class FailingEth:
    @property
    def chain_id(self):
        raise ConnectionError("connection refused")


def test_matching_chain_id_passes():
    web3 = SimpleNamespace(eth=SimpleNamespace(chain_id=614))

    assert verify_chain_id("http://rpc", 614, web3=web3) == 614


def test_mismatched_chain_id_is_rejected():
    web3 = SimpleNamespace(eth=SimpleNamespace(chain_id=1))

    with pytest.raises(ChainMismatchError, match="serves chain 1"):
        verify_chain_id("http://rpc", 614, web3=web3)


def test_unreachable_rpc_is_reported():
    with pytest.raises(ChainMismatchError, match="Could not query"):
        verify_chain_id("http://rpc", 614, web3=SimpleNamespace(eth=FailingEth()))
