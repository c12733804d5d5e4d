"""Background writer that flushes credential snapshots, newest first."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .credentials_repo import JSONValue

logger = logging.getLogger(__name__)


class CredentialSink(Protocol):
    """Durable target that replaces the stored credential keys in one write."""

    async def replace(self, *, values: Mapping[str, JSONValue | None]) -> None:
        """Upsert or delete every key in `values`."""
        ...


@dataclass(slots=True)
class _PendingSnapshot:
    """Latest unwritten snapshot and every caller waiting for it."""

    values: Mapping[str, JSONValue | None]
    waiters: list[asyncio.Future[None]] = field(default_factory=list)


class CredentialWriterClosedError(RuntimeError):
    """Raised when callers submit snapshots after writer shutdown."""

    @classmethod
    def default_message(cls) -> CredentialWriterClosedError:
        """Build deterministic error text for closed writer submissions."""
        return cls("Credential writer is closed and cannot accept new snapshots.")


class CredentialWriter:
    """Write credential snapshots on one worker task.

    Only one write runs at a time. A snapshot submitted while an earlier one
    is still waiting replaces it, so a login followed by a profile update
    costs one write instead of two. Callers whose snapshot was replaced wait
    for the write that carried the newer values and share its outcome.
    """

    _sink: CredentialSink
    _pending: _PendingSnapshot | None
    _worker_task: asyncio.Task[None] | None
    _lifecycle_lock: asyncio.Lock
    _closed: bool
    _writes: int

    def __init__(self, sink: CredentialSink) -> None:
        """Initialize writer state; the worker starts on first submit."""
        self._sink = sink
        self._pending = None
        self._worker_task = None
        self._lifecycle_lock = asyncio.Lock()
        self._closed = False
        self._writes = 0

    @property
    def closed(self) -> bool:
        """Return True once `close` has been called."""
        return self._closed

    @property
    def writes(self) -> int:
        """Return how many snapshots reached the sink."""
        return self._writes

    async def submit(self, values: Mapping[str, JSONValue | None]) -> None:
        """Queue `values` as the newest snapshot and await its write."""
        completion: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        async with self._lifecycle_lock:
            if self._closed:
                raise CredentialWriterClosedError.default_message()
            pending = self._pending
            if pending is None:
                self._pending = _PendingSnapshot(values=values, waiters=[completion])
            else:
                logger.debug(
                    "Superseding unwritten credential snapshot",
                    extra={"waiting_callers": len(pending.waiters)},
                )
                pending.values = values
                pending.waiters.append(completion)
            self._ensure_worker_locked()

        await completion

    async def close(self) -> None:
        """Stop accepting snapshots and flush the pending one before returning."""
        async with self._lifecycle_lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker_task

        if worker is not None:
            await worker
        self._worker_task = None

    def _ensure_worker_locked(self) -> None:
        """Start a worker task when one is not already running."""
        current_worker = self._worker_task
        if current_worker is not None and not current_worker.done():
            return
        self._worker_task = asyncio.create_task(self._run_worker())

    async def _run_worker(self) -> None:
        """Write pending snapshots until none is left."""
        while True:
            pending = self._pending
            if pending is None:
                return
            self._pending = None
            await self._apply(pending)

    async def _apply(self, pending: _PendingSnapshot) -> None:
        """Resolve every waiter of `pending` with the write's outcome."""
        try:
            await self._sink.replace(values=pending.values)
        except Exception as exc:  # noqa: BLE001
            for waiter in pending.waiters:
                if not waiter.done():
                    waiter.set_exception(exc)
            return

        self._writes += 1
        for waiter in pending.waiters:
            if not waiter.done():
                waiter.set_result(None)
