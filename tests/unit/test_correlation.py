"""Unit tests for correlation ID scoping."""

from __future__ import annotations

import asyncio

import pytest

from vantage_controller.correlation import (
    correlation_context,
    ensure_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def test_context_restores_previous_id() -> None:
    set_correlation_id("outer")
    with correlation_context() as inner:
        assert len(inner) == 32
        assert get_correlation_id() == inner
        with correlation_context("fixed") as fixed:
            assert fixed == "fixed"
        assert get_correlation_id() == inner
    assert get_correlation_id() == "outer"
    set_correlation_id(None)


def test_ensure_keeps_existing_id() -> None:
    set_correlation_id(None)
    first = ensure_correlation_id()
    assert ensure_correlation_id() == first
    set_correlation_id(None)


@pytest.mark.asyncio
async def test_tasks_inherit_id() -> None:
    async def read() -> str | None:
        return get_correlation_id()

    with correlation_context("run-1"):
        assert await asyncio.create_task(read()) == "run-1"
