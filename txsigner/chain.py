"""Startup check that the configured RPC endpoint serves the configured chain."""
from __future__ import annotations

import logging
from typing import Optional

from web3 import Web3

logger = logging.getLogger(__name__)


class ChainMismatchError(RuntimeError):
    pass


def verify_chain_id(rpc_url: str, expected: int, timeout_seconds: float = 10.0, web3: Optional[Web3] = None) -> int:
    web3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds}))
    try:
        actual = int(web3.eth.chain_id)
    except Exception as exc:
        raise ChainMismatchError(f"Could not query chain id from {rpc_url}: {exc}") from exc
    if actual != expected:
        raise ChainMismatchError(f"RPC {rpc_url} serves chain {actual}, expected {expected}")
    logger.info("Chain RPC %s serves chain id %s", rpc_url, actual)
    return actual
