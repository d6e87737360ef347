"""
Bounded submission queue for provider calls.

One consumer drains jobs in FIFO order with a fixed pause between them so the
provider's rate limits are respected. The queue is owned by the application
lifespan; ``start()`` and ``stop()`` bracket its life.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple
import structlog
from fastapi import status

from mediagen.core.exceptions import MediaGenException, QueueFullError
from mediagen.core.monitoring.prometheus_metrics import set_queue_depth
from mediagen.core.settings import settings

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


def _stopped_error() -> MediaGenException:
    return MediaGenException("Submission queue stopped", status.HTTP_503_SERVICE_UNAVAILABLE)


class SubmissionQueue:
    """FIFO of provider submissions with a single consumer."""

    def __init__(self, maxsize: Optional[int] = None, pacing_seconds: Optional[float] = None):
        self.maxsize = maxsize if maxsize is not None else settings.submission_queue_size
        self.pacing_seconds = pacing_seconds if pacing_seconds is not None else settings.submission_pacing_seconds
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Future] = None

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        """Start the consumer on the running event loop."""
        if self.is_running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._consumer = asyncio.create_task(self._consume())
        logger.info("Submission queue started", maxsize=self.maxsize, pacing_seconds=self.pacing_seconds)

    async def stop(self) -> None:
        """Stop the consumer and fail the running job and every job still waiting."""
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        failed = 0
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.set_exception(_stopped_error())
            failed += 1
        self._in_flight = None

        while self._queue is not None and not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(_stopped_error())
            failed += 1

        set_queue_depth(0)
        logger.info("Submission queue stopped", pending_jobs_failed=failed)

    async def submit(self, job: Job) -> Any:
        """
        Enqueue ``job`` and wait for its result.

        Exceptions raised by the job are re-raised here. Raises
        QueueFullError when the queue is at capacity, and a 503
        MediaGenException when the queue stops before the job finishes.
        """
        if not self.is_running:
            raise MediaGenException("Submission queue is not running", status.HTTP_503_SERVICE_UNAVAILABLE)

        future = asyncio.get_running_loop().create_future()
        try:
            self._queue.put_nowait((job, future))
        except asyncio.QueueFull:
            logger.warning("Submission queue full", maxsize=self.maxsize)
            raise QueueFullError()

        set_queue_depth(self._queue.qsize())
        return await future

    async def _consume(self) -> None:
        while True:
            item: Tuple[Job, asyncio.Future] = await self._queue.get()
            job, future = item
            set_queue_depth(self._queue.qsize())
            self._in_flight = future
            try:
                if not future.cancelled():
                    try:
                        result = await job()
                    except Exception as e:
                        if not future.done():
                            future.set_exception(e)
                    else:
                        if not future.done():
                            future.set_result(result)
            finally:
                if future.done():
                    self._in_flight = None
                self._queue.task_done()

            if self.pacing_seconds > 0:
                await asyncio.sleep(self.pacing_seconds)
