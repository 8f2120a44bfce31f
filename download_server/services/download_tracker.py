import asyncio
from typing import List, Optional

from download_server.logger_config import get_logger, structured_log
from download_server.monitor import Monitor
from download_server.services.counter_store import CounterStore

logger = get_logger("tracker")


class DownloadTracker:
    """Applies download counter increments off the response path.

    Handlers call ``submit`` and return immediately. Worker tasks drain a
    bounded queue; a full queue drops the update. Failures are logged and
    reported to the monitor, never raised to the caller.
    """

    def __init__(
        self,
        counter_store: CounterStore,
        monitor: Optional[Monitor] = None,
        max_queue_size: int = 1000,
        workers: int = 1,
        drain_timeout: float = 5.0,
    ):
        if workers <= 0:
            raise ValueError("Worker count must be positive")
        self.counter_store = counter_store
        self.monitor = monitor
        self.drain_timeout = drain_timeout
        self._worker_count = workers
        self._max_queue_size = max_queue_size
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self) -> None:
        if self._workers:
            return
        # Queue is created here so it binds to the loop the workers run on
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        for i in range(self._worker_count):
            self._workers.append(asyncio.create_task(self._run(), name=f"download-tracker-{i}"))
        logger.info(f"Download tracker started with {self._worker_count} worker(s)")

    def submit(self, filename: str) -> bool:
        """Queue one increment for filename. Never blocks."""
        if not self._workers:
            logger.warning(f"Download tracker not running, count for {filename} not recorded")
            self.dropped += 1
            return False
        try:
            self._queue.put_nowait(filename)
        except asyncio.QueueFull:
            logger.warning(f"Counter queue full, count for {filename} dropped")
            self.dropped += 1
            return False
        return True

    async def _run(self) -> None:
        while True:
            filename = await self._queue.get()
            try:
                await self._record(filename)
            finally:
                self._queue.task_done()

    async def _record(self, filename: str) -> None:
        try:
            count = await self.counter_store.increment(filename)
        except Exception as e:
            logger.error(f"Download count update failed for {filename}: {e}", exc_info=True)
            if self.monitor:
                self.monitor.fail()
            return

        if self.monitor:
            self.monitor.pass_()
        logger.info(structured_log(
            "Download count updated",
            event="download_counted",
            filename=filename,
            downloads=count,
        ))

    async def flush(self) -> None:
        """Wait until every queued increment has been applied."""
        # Without workers nothing drains the queue
        if not self._workers:
            return
        await self._queue.join()

    async def close(self) -> None:
        """Drain what fits in ``drain_timeout``, then stop the workers."""
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown drain timed out, {self._queue.qsize()} count update(s) lost")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Download tracker stopped")
