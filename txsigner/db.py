"""SQLAlchemy engine construction shared by the wallet and ledger stores."""
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session


def make_engine(url: str, *, timeout_seconds: float, echo: bool = False) -> Engine:
    """Create a pooled engine whose connects and pool checkouts respect ``timeout_seconds``.

    SQLite URLs (used locally and in tests) get the dialect's default pool, which
    does not accept a checkout timeout.
    """
    parsed = make_url(url)
    kwargs: Dict[str, Any] = {"echo": echo, "future": True}
    if parsed.get_backend_name() != "sqlite":
        kwargs["pool_pre_ping"] = True
        kwargs["pool_timeout"] = timeout_seconds
        if parsed.get_backend_name() == "postgresql":
            kwargs["connect_args"] = {"connect_timeout": max(int(timeout_seconds), 1)}
    return create_engine(parsed, **kwargs)


def limit_statement_time(session: Session, timeout_seconds: float) -> None:
    """Bound every statement in the session's current transaction by ``timeout_seconds``.

    Only PostgreSQL has a per-transaction statement timeout; other backends rely
    on the engine's connect and pool timeouts.
    """
    if session.get_bind().dialect.name != "postgresql":
        return
    milliseconds = max(int(timeout_seconds * 1000), 1)
    session.execute(text(f"SET LOCAL statement_timeout = {milliseconds}"))
