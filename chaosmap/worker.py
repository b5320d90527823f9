"""Tile worker pool: fixed-size threads, bounded hand-off, global stop.

Each TileWorker renders one TileRequest at a time. The divergence kernels
release the GIL, so N threads integrate on N cores. The coordinator owns
the busy flags and the pending counter; both are only touched under its
condition lock.

There is no task queue: submit_tile() blocks, polling at a bounded
interval, until some worker is free. Results are delivered through the
caller's on_complete callback in whatever order tiles finish, keyed by
their offsets.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

import numpy as np

from chaosmap.compute import TileRequest, TileResult, default_worker_count
from chaosmap.tile import render_request
from simulation import warmup

logger = logging.getLogger(__name__)

# Bounded wait between checks for a free worker (seconds)
DEFAULT_POLL_INTERVAL = 0.01

TileCallback = Callable[[TileResult], None]


class TileWorker(threading.Thread):
    """Pool thread that renders one tile at a time.

    Holds at most one request: the inbox has room for a single item and
    the coordinator only assigns to a worker whose busy flag is clear.
    """

    def __init__(
        self,
        index: int,
        stop_event: threading.Event,
        on_done: Callable[[TileWorker, TileResult, TileCallback | None], None],
    ):
        super().__init__(name=f"tile-worker-{index}", daemon=True)
        self.index = index
        self.busy = False
        self._stop_event = stop_event
        self._on_done = on_done
        self._inbox: queue.Queue = queue.Queue(maxsize=1)

    def assign(self, request: TileRequest, on_complete: TileCallback | None) -> None:
        self._inbox.put_nowait((request, on_complete))

    def shutdown(self) -> None:
        """Ask the thread to exit once its current tile is finished."""
        self._inbox.put(None)

    def run(self) -> None:
        while True:
            item = self._inbox.get()
            if item is None:
                return
            request, on_complete = item
            try:
                result = render_request(request, self._stop_event.is_set)
            except Exception:
                logger.exception(
                    "Tile (%d, %d) failed on %s",
                    request.offset_x, request.offset_y, self.name,
                )
                result = TileResult(
                    request.offset_x, request.offset_y,
                    request.width, request.height,
                    np.zeros(request.width * request.height * 4, dtype=np.uint8),
                    cancelled=True,
                )
            self._on_done(self, result, on_complete)


class WorkerCoordinator:
    """Fixed-size tile worker pool with cooperative cancellation.

    Usage::

        with WorkerCoordinator() as pool:
            pool.submit_tile(request, results.append)
            pool.wait_idle()

    The pool starts lazily on the first submission. stop() cancels
    in-flight tiles; reset() recreates the pool for a new render.
    """

    def __init__(
        self,
        n_workers: int | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if n_workers is not None and n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self._n_workers = n_workers or default_worker_count()
        self._poll_interval = poll_interval
        self._cond = threading.Condition()
        # Serializes start/close/reset; _workers is only replaced under it
        self._lifecycle_lock = threading.RLock()
        self._workers: list[TileWorker] = []
        self._pending = 0
        self._stop_event = threading.Event()

    @property
    def size(self) -> int:
        return self._n_workers

    @property
    def pending_tiles(self) -> int:
        with self._cond:
            return self._pending

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Spawn the worker threads (no-op if already running).

        Safe to call from several threads at once: exactly one pool of
        size workers is built.
        """
        with self._lifecycle_lock:
            if self._workers:
                return
            warmup()
            workers = [
                TileWorker(i, self._stop_event, self._tile_done)
                for i in range(self._n_workers)
            ]
            for worker in workers:
                worker.start()
            with self._cond:
                self._workers = workers
            logger.info("Started tile worker pool with %d workers", self._n_workers)

    def submit_tile(
        self,
        request: TileRequest,
        on_complete: TileCallback | None = None,
    ) -> None:
        """Hand *request* to a free worker, waiting for one if necessary.

        The request is validated here, in the caller's thread, so
        configuration errors never reach a worker.

        on_complete(result) runs on the worker thread. After stop(),
        submitted tiles come back immediately with cancelled=True.

        Raises:
            ConfigError: if the request is invalid.
        """
        request.validate()

        worker = None
        while worker is None:
            self.start()
            with self._cond:
                worker = self._free_worker()
                # An empty table means close() ran meanwhile: restart above
                while worker is None and self._workers:
                    self._cond.wait(self._poll_interval)
                    worker = self._free_worker()
                if worker is None:
                    continue
                # _tile_done needs this lock, so busy and pending are set first
                worker.assign(request, on_complete)
                worker.busy = True
                self._pending += 1

        logger.debug(
            "Dispatched tile (%d, %d) %dx%d to %s",
            request.offset_x, request.offset_y,
            request.width, request.height, worker.name,
        )

    def stop(self) -> None:
        """Cancel all in-flight tiles. Idempotent; completed tiles are kept."""
        if not self._stop_event.is_set():
            logger.info("Stopping tile workers (%d pending)", self.pending_tiles)
        self._stop_event.set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no tiles are pending. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout)

    def reset(self, n_workers: int | None = None) -> None:
        """Tear the pool down and build a fresh one with a cleared stop flag.

        Call this whenever worker-affecting configuration changes.
        """
        if n_workers is not None and n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        with self._lifecycle_lock:
            self.close()
            if n_workers is not None:
                self._n_workers = n_workers
            self._stop_event = threading.Event()
            self.start()

    def close(self) -> None:
        """Stop all tiles and join the worker threads.

        The pool may be used again afterwards: the next submission starts
        fresh workers with a cleared stop flag.
        """
        with self._lifecycle_lock:
            with self._cond:
                workers, self._workers = self._workers, []
                self._cond.notify_all()
            if not workers:
                return
            self.stop()
            for worker in workers:
                worker.shutdown()
            for worker in workers:
                worker.join()
            self._stop_event = threading.Event()
            logger.info("Tile worker pool shut down")

    def __enter__(self) -> WorkerCoordinator:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _free_worker(self) -> TileWorker | None:
        for worker in self._workers:
            if not worker.busy:
                return worker
        return None

    def _tile_done(
        self,
        worker: TileWorker,
        result: TileResult,
        on_complete: TileCallback | None,
    ) -> None:
        # Deliver before freeing the worker so wait_idle() never returns
        # ahead of a result still in its callback.
        try:
            if on_complete is not None:
                on_complete(result)
        except Exception:
            logger.exception(
                "Tile callback failed for tile (%d, %d)",
                result.offset_x, result.offset_y,
            )
        finally:
            with self._cond:
                worker.busy = False
                self._pending -= 1
                self._cond.notify_all()
