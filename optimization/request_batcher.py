import asyncio
import heapq
import inspect
import itertools
from collections.abc import Callable
from typing import Any

from utils.logger import get_logger, log_fields

logger = get_logger(__name__)

DEFAULT_PRIORITY = 5


class RequestBatcher:
    """
    Priority queue for background work, drained in rounds.

    Lower priority numbers run first. Each round runs up to ``batch_size``
    requests concurrently and waits ``batch_delay_ms`` before the next round.
    Intended for best-effort work such as cache warming, not for interactive
    requests.
    """

    def __init__(self, batch_size: int = 4, batch_delay_ms: int = 100):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if batch_delay_ms < 0:
            raise ValueError("batch_delay_ms must be >= 0")
        self.batch_size = batch_size
        self.batch_delay_ms = batch_delay_ms
        self._queue: list[tuple[int, int, Callable[[], Any], asyncio.Future]] = []
        self._sequence = itertools.count()
        self._worker: asyncio.Task | None = None

    def queue_size(self) -> int:
        return len(self._queue)

    async def submit(self, request_fn: Callable[[], Any], priority: int = DEFAULT_PRIORITY) -> Any:
        """
        Queue ``request_fn`` and wait for its result.

        ``request_fn`` may be a plain callable or return an awaitable. Its
        exception, if any, is raised to the awaiting caller.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        heapq.heappush(self._queue, (priority, next(self._sequence), request_fn, future))

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        rounds = 0
        while self._queue:
            batch = [heapq.heappop(self._queue) for _ in range(min(self.batch_size, len(self._queue)))]
            rounds += 1
            await asyncio.gather(*(self._run(item) for item in batch))

            if self._queue:
                await asyncio.sleep(self.batch_delay_ms / 1000)

        logger.debug("Batch queue drained", extra=log_fields(rounds=rounds))

    @staticmethod
    async def _run(item: tuple[int, int, Callable[[], Any], asyncio.Future]) -> None:
        _, _, request_fn, future = item
        try:
            result = request_fn()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
            return

        if not future.done():
            future.set_result(result)
