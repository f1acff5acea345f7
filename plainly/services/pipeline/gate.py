"""Join primitive for a pipeline stage.

A stage may only complete once BOTH its display-floor timer has elapsed and
its completion signal has been raised. ``StageGate.wait()`` runs the two as
separate tasks and gathers them, so the order in which they finish does not
matter.
"""

import asyncio
import time
from collections.abc import Callable


class StageGate:
    """Display floor AND completion signal for one stage.

    Args:
        min_display_seconds: Minimum time the stage stays visibly active.
        clock: Monotonic time source used for the recorded timestamps.
    """

    def __init__(
        self,
        min_display_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_display_seconds = min_display_seconds
        self._clock = clock
        self._signal = asyncio.Event()
        self.signal_at: float | None = None
        self.floor_elapsed_at: float | None = None

    @property
    def signalled(self) -> bool:
        return self._signal.is_set()

    def signal(self) -> None:
        """Raise the completion signal (idempotent)."""
        if not self._signal.is_set():
            self.signal_at = self._clock()
            self._signal.set()

    async def wait_signal(self, timeout: float | None = None) -> bool:
        """Wait for the completion signal only.

        Returns:
            True if the signal fired, False if ``timeout`` elapsed first.
        """
        try:
            await asyncio.wait_for(self._signal.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def _floor(self) -> None:
        await asyncio.sleep(self.min_display_seconds)
        self.floor_elapsed_at = self._clock()

    async def wait(self) -> None:
        """Wait until the display floor has elapsed and the signal has fired."""
        floor = asyncio.ensure_future(self._floor())
        signal = asyncio.ensure_future(self._signal.wait())
        try:
            await asyncio.gather(floor, signal)
        finally:
            for task in (floor, signal):
                if not task.done():
                    task.cancel()
