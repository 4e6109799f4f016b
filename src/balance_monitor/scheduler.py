from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class FixedRateScheduler:
    """Starts a job immediately, then every ``interval`` seconds after the first start.

    Start times are anchored to the first run, so a slow run does not push the
    schedule back. A run that takes longer than the interval overlaps the next.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep

    async def run(self, job: Job, max_runs: int | None = None) -> None:
        tasks: set[asyncio.Task[None]] = set()
        started = 0
        origin = self._clock()
        try:
            while max_runs is None or started < max_runs:
                task = asyncio.create_task(self._run_once(job, started))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
                started += 1

                if max_runs is not None and started >= max_runs:
                    break

                next_start = origin + started * self.interval
                await self._sleep(max(0.0, next_start - self._clock()))

            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_once(self, job: Job, index: int) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled run %d failed", index)
