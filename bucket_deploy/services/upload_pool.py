"""
Bounded pool of upload worker threads.
"""
import queue
import threading
from typing import Callable, List, Optional

from loguru import logger

from ..models.data_models import DeployStats, LocalFile


# How long blocking queue calls wait before looking at the cancel event again.
POLL_INTERVAL = 0.05

_DONE = object()


class UploadWorker(threading.Thread):
    """Takes files off the pool queue and uploads them until told to stop."""

    def __init__(self, pool: 'UploadPool', index: int):
        super().__init__(name=f"upload-worker-{index}")
        self.daemon = True
        self.pool = pool

    def run(self):
        pool = self.pool
        while True:
            try:
                item = pool.queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if pool.cancel.is_set():
                    return
                continue

            if item is _DONE or pool.cancel.is_set():
                return

            try:
                pool.store.put(item)
            except Exception as e:
                logger.error(f"Upload of {item.key} failed: {e}")
                pool.fail(e)
                return

            pool.stats.add_uploaded()


class UploadPool:
    """
    Fixed number of workers fed through a bounded queue.

    A failed upload is handed to ``on_error`` and the shared cancel event is
    set; workers finish the upload in hand but take no new work.
    """

    def __init__(self, store, workers: int, cancel: threading.Event, stats: DeployStats,
                 on_error: Optional[Callable[[BaseException], None]] = None):
        self.store = store
        self.cancel = cancel
        self.stats = stats
        self.on_error = on_error
        self.queue: queue.Queue = queue.Queue(maxsize=workers)
        self._workers: List[UploadWorker] = [UploadWorker(self, i) for i in range(workers)]

    def fail(self, error: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(error)
        self.cancel.set()

    def start(self) -> None:
        for worker in self._workers:
            worker.start()

    def _put(self, item) -> bool:
        while not self.cancel.is_set():
            try:
                self.queue.put(item, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def submit(self, local_file: LocalFile) -> bool:
        """Queue a file for upload. Blocks while the queue is full; False once cancelled."""
        return self._put(local_file)

    def close(self) -> None:
        """Tell every worker there is no more work."""
        for _ in self._workers:
            if not self._put(_DONE):
                break

    def wait(self) -> None:
        """Wait for every worker to stop."""
        for worker in self._workers:
            worker.join()
