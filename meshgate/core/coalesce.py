# meshgate/core/coalesce.py
"""
Collapse-to-latest execution for global reconciliation steps

VPN apply and proxy reload are global operations. A call that arrives while a
run is in flight does not start a second concurrent run: it waits for one
follow-up run, which every caller queued in the meantime shares. The follow-up
re-reads the registry, so the most recent change always wins.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class CoalescingRunner:
    """
    At most one in-flight execution of `func`; queued callers share the next one
    """

    def __init__(self, func: Callable[[], Awaitable[Any]], name: str = "task"):
        self._func = func
        self.name = name
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> Any:
        """Request an execution and wait for the run that serves this request"""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)

        if not self.busy:
            self._task = loop.create_task(self._drain())
        else:
            logger.debug(f"{self.name}: run in flight, queued for follow-up")

        return await waiter

    async def _drain(self):
        while self._waiters:
            waiters, self._waiters = self._waiters, []
            self.runs += 1

            try:
                result = await self._func()
            except Exception as e:
                for waiter in waiters:
                    if not waiter.done():
                        waiter.set_exception(e)
            else:
                for waiter in waiters:
                    if not waiter.done():
                        waiter.set_result(result)
