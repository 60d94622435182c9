"""FastAPI dependencies for API routes."""

import asyncio
import weakref

from fastapi import Request

from app.services.flow_orchestrator import FlowOrchestrator


class TransactionLocks:
    """
    One asyncio.Lock per transaction id.

    Operations on the same transaction are serialized; different transactions run
    independently. Locks are weakly held and disappear once no request uses them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, transaction_id: str) -> asyncio.Lock:
        lock = self._locks.get(transaction_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[transaction_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


def get_orchestrator(request: Request) -> FlowOrchestrator:
    return request.app.state.orchestrator


def get_transaction_lock(transaction_id: str, request: Request) -> asyncio.Lock:
    """Resolve the lock for path parameter transaction_id."""
    return request.app.state.transaction_locks.lock_for(transaction_id)
