"""Failure taxonomy for a signing pipeline invocation.

Every fatal error names the step that failed together with the identifiers a
caller needs to log it and decide on redelivery. The underlying collaborator
exception is always chained as ``__cause__``.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class Step(str, Enum):
    DECODE = "decode"
    RESOLVE_WALLET = "resolve_wallet"
    RESOLVE_DERIVATION_PATH = "resolve_derivation_path"
    SIGN = "sign"
    DERIVE_RECORD = "derive_record"
    PERSIST = "persist"
    RELAY = "relay"
    TEARDOWN = "teardown"


class PipelineError(Exception):
    step: Step = Step.DECODE

    def __init__(
        self,
        message: str,
        *,
        step: Optional[Step] = None,
        request_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step
        self.request_id = request_id
        self.transaction_id = transaction_id
        self.message_id = message_id

    def __str__(self) -> str:
        base = super().__str__()
        details = [f"step={self.step.value}"]
        if self.request_id:
            details.append(f"request_id={self.request_id}")
        if self.transaction_id:
            details.append(f"transaction_id={self.transaction_id}")
        return f"{base} ({' '.join(details)})"


class DecodeError(PipelineError):
    step = Step.DECODE


class WalletNotFound(PipelineError):
    step = Step.RESOLVE_WALLET


class DerivationPathNotFound(PipelineError):
    step = Step.RESOLVE_DERIVATION_PATH


class ResolverError(PipelineError):
    """Wallet directory failure other than a missing row; step is set per call."""

    step = Step.RESOLVE_WALLET


class SigningFailed(PipelineError):
    step = Step.SIGN


class AmountConversionError(PipelineError):
    step = Step.DERIVE_RECORD


class PersistError(PipelineError):
    step = Step.PERSIST


class RelayError(PipelineError):
    step = Step.RELAY


class InvocationCancelled(PipelineError):
    """The invocation was cancelled or ran past its deadline before ``step`` started."""


class TeardownWarning(PipelineError):
    """Reported, never raised: teardown runs after all side effects succeeded."""

    step = Step.TEARDOWN
