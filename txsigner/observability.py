"""Logging setup and the per-invocation observability context."""
from __future__ import annotations

import logging
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional

from .errors import InvocationCancelled, Step

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s"

_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
    "PANIC": logging.CRITICAL,
}


def resolve_level(name: str) -> int:
    try:
        return _LEVELS[name.strip().upper()]
    except KeyError:
        raise ValueError(f"unrecognized LOG_LEVEL value: {name}") from None


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    logging.getLogger().setLevel(resolve_level(level))


def call_timeout(limit: float, remaining: Optional[float]) -> float:
    """Timeout for one external call: the transport limit, cut to what the invocation has left."""
    if remaining is None:
        return limit
    return min(limit, remaining)


class FieldsAdapter(logging.LoggerAdapter):
    """Appends bound ``key=value`` fields to every message."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        fields = self.extra or {}
        if not fields:
            return msg, kwargs
        rendered = " ".join(f"{key}={value}" for key, value in fields.items() if value not in (None, ""))
        return f"{msg} [{rendered}]", kwargs

    def bind(self, **fields: Any) -> "FieldsAdapter":
        merged = dict(self.extra or {})
        merged.update(fields)
        return FieldsAdapter(self.logger, merged)


@dataclass
class InvocationContext:
    """State scoped to one pipeline invocation: logger fields, deadline, cancellation."""

    invocation_id: str
    logger: FieldsAdapter
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def create(
        cls,
        *,
        invocation_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "InvocationContext":
        invocation_id = invocation_id or str(uuid.uuid4())
        base = logger or logging.getLogger("txsigner.pipeline")
        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        return cls(
            invocation_id=invocation_id,
            logger=FieldsAdapter(base, {"invocation_id": invocation_id}),
            deadline=deadline,
        )

    @classmethod
    def from_lambda(cls, lambda_context: Any, logger: Optional[logging.Logger] = None) -> "InvocationContext":
        request_id = getattr(lambda_context, "aws_request_id", None)
        if not request_id:
            raise ValueError("context is invalid")
        timeout_seconds = None
        remaining = getattr(lambda_context, "get_remaining_time_in_millis", None)
        if callable(remaining):
            timeout_seconds = max(remaining() / 1000.0, 0.0)
        return cls.create(invocation_id=request_id, timeout_seconds=timeout_seconds, logger=logger)

    def bind(self, **fields: Any) -> None:
        self.logger = self.logger.bind(**fields)

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def ensure_active(self, step: Step, **error_fields: Any) -> Optional[float]:
        """Raise ``InvocationCancelled`` unless the invocation may run ``step``.

        Returns the seconds left before the deadline, or None without one, so the
        caller can bound the step's external call by it.
        """
        if self.cancel_event.is_set():
            raise InvocationCancelled(f"invocation cancelled before {step.value}", step=step, **error_fields)
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise InvocationCancelled(f"invocation deadline passed before {step.value}", step=step, **error_fields)
        return remaining
