"""Cancellable unit of background work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

log = logging.getLogger(__name__)


class CancellableTask:
    """Runs a coroutine in the background until it finishes or is cancelled.

    Cancellation is delivered at the work's next suspension point; ``cancel``
    does not return until the work has actually stopped.  Failures inside the
    work are logged here and never re-raised.
    """

    def __init__(
        self,
        work: Coroutine[Any, Any, None],
        *,
        name: str | None = None,
    ) -> None:
        self.name = name or "task"
        # Scheduled right away; a cancel before the first step still closes
        # the coroutine cleanly.
        self._task = asyncio.create_task(work, name=name)

    def is_finished(self) -> bool:
        """Whether the work has stopped, for any reason (non-blocking)."""
        return self._task.done()

    async def cancel(self) -> None:
        """Abort the work and wait until it has stopped."""
        self._task.cancel()
        await self._join()

    async def join(self) -> None:
        """Wait for the work to finish on its own."""
        await self._join()

    async def _join(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            # Only swallow the cancellation we sent to the work itself
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.debug("Task '%s' cancelled", self.name)
        except Exception:
            log.exception("Task '%s' failed", self.name)
