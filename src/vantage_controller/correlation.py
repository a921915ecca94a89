"""Correlation IDs carried across asyncio tasks.

A correlation ID ties together every log line produced while handling one
unit of work: a whole process run, one discovery pass, or one MQTT command.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "vantage_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a fresh 32 character hex ID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """Scope a correlation ID, restoring the previous one on exit.

    A new ID is generated when *correlation_id* is not given.
    """
    token = _correlation_id.set(correlation_id or generate_correlation_id())
    try:
        yield _correlation_id.get() or ""
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id() -> str:
    """Return the current ID, generating one for task entry points without it."""
    current = _correlation_id.get()
    if current is None:
        current = generate_correlation_id()
        _correlation_id.set(current)
    return current
