#
# Copyright 2025 The AirstageLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Request throttling for a single indoor unit.

The WLAN adapter in the indoor unit handles very few simultaneous HTTP
connections. Every request to a unit goes through its RequestScheduler,
which caps concurrency and spaces requests out.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Set, Tuple, TypeVar

from .const import MAX_CONCURRENT_REQUESTS, REQUEST_DELAY

logger = logging.getLogger(__name__)

T = TypeVar('T')

UnitOfWork = Callable[[], Awaitable[Any]]
SleepCallable = Callable[[float], Awaitable[Any]]


class RequestScheduler:
    """FIFO queue with a concurrency cap and a delay after each completion.

    A finished request holds its slot for ``request_delay`` seconds, success
    or failure alike, before the next queued request may use it. State is
    only touched from the event loop thread.
    """

    def __init__(self, max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
                 request_delay: float = REQUEST_DELAY,
                 sleep: SleepCallable = asyncio.sleep):
        if max_concurrent_requests < 1:
            raise ValueError("max_concurrent_requests must be at least 1")
        self.max_concurrent_requests = max_concurrent_requests
        self.request_delay = request_delay
        self._sleep = sleep
        self._queue: Deque[Tuple[UnitOfWork, asyncio.Future]] = deque()
        self._active = 0
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        """Number of requests waiting for a slot."""
        return len(self._queue)

    @property
    def active(self) -> int:
        """Number of occupied slots (running or cooling down)."""
        return self._active

    async def enqueue(self, work: Callable[[], Awaitable[T]]) -> T:
        """Queue a unit of work and wait for its result.

        Exceptions raised by the work propagate to the caller unchanged.
        Nothing is retried.
        """
        future = asyncio.get_running_loop().create_future()
        self._queue.append((work, future))
        self._process_queue()
        return await future

    def _process_queue(self):
        while self._queue and self._active < self.max_concurrent_requests:
            work, future = self._queue.popleft()
            if future.done():
                # Caller gave up while waiting
                continue
            self._active += 1
            task = asyncio.create_task(self._run(work, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, work: UnitOfWork, future: asyncio.Future):
        try:
            try:
                result = await work()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                self.failed += 1
                if not future.done():
                    future.set_exception(e)
            else:
                self.completed += 1
                if not future.done():
                    future.set_result(result)

            if self.request_delay > 0:
                await self._sleep(self.request_delay)
        finally:
            self._active -= 1
            self._process_queue()

    async def shutdown(self):
        """Cancel queued and running requests."""
        while self._queue:
            _, future = self._queue.popleft()
            future.cancel()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"Scheduler shut down ({len(tasks)} in-flight requests cancelled)")

    def to_dict(self) -> dict:
        return {
            'max_concurrent_requests': self.max_concurrent_requests,
            'request_delay': self.request_delay,
            'active': self._active,
            'pending': len(self._queue),
            'completed': self.completed,
            'failed': self.failed,
        }
