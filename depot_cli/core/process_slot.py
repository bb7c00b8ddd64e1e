"""
Single-owner slot for the one DepotDownloader child process allowed to run.

A second claim while the slot is held is rejected immediately with
`OperationInProgressError`; requests are never queued or preempted.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Awaitable

from depot_cli.exceptions import OperationInProgressError

log = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0


def request_stop(process: Any, grace: float = TERMINATE_GRACE_SECONDS) -> None:
    """
    Sends SIGTERM without waiting, and schedules a kill if the child is still
    alive after `grace` seconds.
    """
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError):
        process.terminate()

    def _kill_if_alive() -> None:
        if process.returncode is None:
            log.debug("Child ignored terminate; killing.")
            with suppress(ProcessLookupError):
                process.kill()

    with suppress(RuntimeError):
        asyncio.get_running_loop().call_later(grace, _kill_if_alive)


async def terminate_process(
    process: Any, grace: float = TERMINATE_GRACE_SECONDS
) -> None:
    """Terminates and reaps a child, escalating to kill after `grace` seconds."""
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()


class ProcessSlot:
    """Holds at most one running child process and who owns it."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._process: Any = None
        self._owner: str | None = None
        self._cancel_requested = False
        self._cancel_event: asyncio.Event | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def process(self) -> Any:
        return self._process

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @asynccontextmanager
    async def claim(self, owner: str) -> AsyncIterator["ProcessSlot"]:
        """
        Takes ownership for the duration of the block.

        Raises:
            OperationInProgressError: If another operation holds the slot.
        """
        if self._lock.locked():
            raise OperationInProgressError(
                f"Operation in progress: '{self._owner}' is already running. "
                "Cancel it or wait for it to finish."
            )
        await self._lock.acquire()
        self._owner = owner
        self._cancel_requested = False
        self._cancel_event = asyncio.Event()
        try:
            yield self
        finally:
            self._process = None
            self._owner = None
            self._cancel_event = None
            self._lock.release()

    def attach(self, process: Any) -> None:
        self._process = process

    def detach(self) -> None:
        self._process = None

    async def pause(self, delay: Awaitable[Any]) -> bool:
        """
        Awaits a backoff delay, cut short by `cancel()`.

        Returns:
            True when the operation was cancelled before or during the delay.
        """
        if self._cancel_event is None:
            await delay
            return self._cancel_requested
        sleeper = asyncio.ensure_future(delay)
        waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)
        return self._cancel_requested

    async def cancel(self) -> bool:
        """
        Cancels the operation holding the slot, terminating its child if one is
        attached. Returns False when the slot is free.
        """
        if not self._lock.locked():
            return False
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()
        log.info(f"[yellow]Cancelling {self._owner}...[/yellow]")
        if self._process is not None:
            await terminate_process(self._process)
        return True
