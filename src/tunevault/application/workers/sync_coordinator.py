# Hey future me - this is the ONLY way a sync gets started. Callers send a SyncCommand down
# the request queue and get a SyncStatus back; the coordinator owns the single sync slot.
#
# STATE MACHINE:
#   IDLE      + Sync*     -> spawn task, BUSY(None)
#   BUSY      + Sync*     -> nothing happens, reply with current BUSY(progress)
#   BUSY      -> COMPLETED / FAILED(reason) when the task ends (task sets it itself)
#   COMPLETED / FAILED + GetStatus -> reply with it ONCE, then flip to IDLE
#   GetStatus never starts anything
#
# The status also lives in a StatusCell that UI code can watch() directly, so a progress
# bar doesn't have to poll through the queue.
#
# USAGE:
#   coordinator = SyncCoordinator(sync_service)
#   await coordinator.start()
#   status = await coordinator.request(SyncCommand.sync_all())
#   ...
#   await coordinator.stop()
"""Single-writer sync coordinator with a request channel."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from tunevault.application.services.sync_service import SyncService
from tunevault.domain.entities import SyncCommand, SyncCommandKind, SyncStatus
from tunevault.domain.exceptions import TunevaultError
from tunevault.infrastructure.observability import set_sync_run_id

logger = logging.getLogger(__name__)


class StatusCell:
    """Holds the latest SyncStatus and wakes up everyone waiting for a change.

    set() is synchronous so the sync task can publish progress from anywhere.
    """

    def __init__(self, initial: SyncStatus | None = None) -> None:
        self._value = initial or SyncStatus.idle()
        self._version = 0
        self._changed = asyncio.Event()

    def get(self) -> SyncStatus:
        return self._value

    # Each set() fires the current Event and swaps in a fresh one, so waiters that
    # re-check after waking never see a stale "already set" flag.
    def set(self, value: SyncStatus) -> None:
        self._value = value
        self._version += 1
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def wait_for(self, predicate: Callable[[SyncStatus], bool]) -> SyncStatus:
        """Wait until the status satisfies ``predicate`` and return it."""
        while not predicate(self._value):
            await self._changed.wait()
        return self._value

    async def watch(self) -> AsyncIterator[SyncStatus]:
        """Yield the current status, then every subsequent one.

        Fast consecutive updates may be coalesced; the latest value is never skipped.
        """
        version = self._version
        yield self._value
        while True:
            while self._version == version:
                await self._changed.wait()
            version = self._version
            yield self._value


class SyncCoordinator:
    """Serializes sync requests and runs at most one sync task at a time."""

    def __init__(self, sync_service: SyncService) -> None:
        """Initialize coordinator.

        Args:
            sync_service: Service that performs the actual sync runs
        """
        self._service = sync_service
        self._requests: asyncio.Queue[tuple[SyncCommand, asyncio.Future[SyncStatus]]] = (
            asyncio.Queue()
        )
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._worker: asyncio.Task[None] | None = None
        self.status = StatusCell()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start serving requests."""
        if self.is_running:
            logger.warning("Sync coordinator is already running")
            return
        self._worker = asyncio.create_task(self._serve(), name="sync-coordinator")
        logger.info("Sync coordinator started")

    # Listen up: stop() does NOT kill a running sync mid-transaction. It asks for a cancel
    # (observed at the next transaction boundary) and waits for the task to wind down.
    async def stop(self) -> None:
        """Stop the coordinator, letting a running sync reach a transaction boundary."""
        if self._task is not None and not self._task.done():
            logger.info("Waiting for running sync to stop")
            self._service.request_cancel()
            await self._task

        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None

        while not self._requests.empty():
            _, future = self._requests.get_nowait()
            if not future.done():
                future.cancel()
            self._requests.task_done()
        logger.info("Sync coordinator stopped")

    async def request(self, command: SyncCommand) -> SyncStatus:
        """Send a command and wait for the coordinator's reply.

        Raises:
            RuntimeError: The coordinator is not running
        """
        if not self.is_running:
            raise RuntimeError("Sync coordinator is not running")
        future: asyncio.Future[SyncStatus] = asyncio.get_running_loop().create_future()
        await self._requests.put((command, future))
        return await future

    def get_status(self) -> dict[str, Any]:
        """Get worker status information."""
        current = self.status.get()
        return {
            "name": "sync_coordinator",
            "running": self.is_running,
            "state": current.state.value,
            "progress": current.progress,
            "reason": current.reason,
        }

    async def _serve(self) -> None:
        while True:
            command, future = await self._requests.get()
            try:
                reply = await self._handle(command)
            except Exception as e:
                logger.exception(f"Failed to handle {command.kind.value}: {e}")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(reply)
            finally:
                self._requests.task_done()

    async def _handle(self, command: SyncCommand) -> SyncStatus:
        async with self._lock:
            if not command.starts_sync:
                return self._observe()

            if self._task is not None and not self._task.done():
                current = self.status.get()
                logger.debug(f"Sync already running, ignoring {command.kind.value}")
                return current

            # A finished-but-unobserved result is superseded by the new run
            self._task = asyncio.create_task(
                self._run_sync(command), name=f"sync-{command.kind.value}"
            )
            busy = SyncStatus.busy()
            self.status.set(busy)
            logger.info(f"Sync started: {command.kind.value}")
            return busy

    def _observe(self) -> SyncStatus:
        current = self.status.get()
        if current.is_finished:
            # Report the outcome once, then forget the finished task
            self._task = None
            self.status.set(SyncStatus.idle())
        return current

    async def _run_sync(self, command: SyncCommand) -> None:
        run_id = set_sync_run_id()
        logger.info(f"Sync run {run_id} ({command.kind.value}) running")

        def progress(message: str) -> None:
            self.status.set(SyncStatus.busy(message))

        try:
            await self._dispatch(command, progress)
        except asyncio.CancelledError:
            self.status.set(SyncStatus.failed("Sync task cancelled"))
            raise
        except TunevaultError as e:
            logger.warning(f"Sync run {run_id} failed: {e.message}")
            self.status.set(SyncStatus.failed(e.message))
        except Exception as e:
            logger.exception(f"Sync run {run_id} crashed: {e}")
            self.status.set(SyncStatus.failed(f"Unexpected error: {e}"))
        else:
            logger.info(f"Sync run {run_id} completed")
            self.status.set(SyncStatus.completed())
        finally:
            # A cancel that arrived during the last transaction must not hit the next run
            self._service.clear_cancel()

    async def _dispatch(
        self, command: SyncCommand, progress: Callable[[str], None]
    ) -> None:
        match command.kind:
            case SyncCommandKind.SYNC_ALL:
                await self._service.sync_all(progress)
            case SyncCommandKind.SYNC_LOCAL_ALL:
                await self._service.sync_local_all(progress)
            case SyncCommandKind.SYNC_LOCAL:
                assert command.source_id is not None
                await self._service.sync_local(command.source_id, progress)
            case SyncCommandKind.SYNC_REMOTE_ALL:
                await self._service.sync_remote_all(progress)
            case SyncCommandKind.SYNC_REMOTE:
                assert command.source_id is not None
                await self._service.sync_remote(command.source_id, progress)
            case _:
                raise ValueError(f"{command.kind.value} does not start a sync")
