"""
Tests for per-transaction serialization in the HTTP layer.
"""

import asyncio

import pytest

from app.api.dependencies import TransactionLocks
from app.constants.stages import STAGE_VALIDATING


def test_same_id_same_lock():
    locks = TransactionLocks()
    first = locks.lock_for("tx1")
    assert locks.lock_for("tx1") is first
    assert locks.lock_for("tx2") is not first


def test_unused_locks_are_released():
    locks = TransactionLocks()
    locks.lock_for("tx1")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_concurrent_transitions_are_serialized(orchestrator):
    """Two racing identical transitions under the lock: exactly one succeeds."""
    locks = TransactionLocks()
    await orchestrator.initialize("tx1", "c1", "s1")

    async def attempt():
        async with locks.lock_for("tx1"):
            return await orchestrator.transition("tx1", STAGE_VALIDATING)

    results = await asyncio.gather(attempt(), attempt())

    assert sorted(r.success for r in results) == [False, True]
    assert len(orchestrator.get_context("tx1").machine.history) == 1
