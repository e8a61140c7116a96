from __future__ import annotations

import itertools
import logging
import queue
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Deque, Iterable, List, Optional, Set, Tuple, TypeVar

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 15
DEFAULT_QUEUE_SIZE = 15

T = TypeVar("T")
_Unit = Tuple[Callable[..., Any], Tuple[Any, ...]]
_DONE = object()


class Scheduler:
    """Bounded, self-feeding work queue drained by a fixed pool of worker threads.

    Units are callables. The entry point seeds them with submit(), which
    blocks while the queue is full. Running units add more with spawn():
    one feeder thread moves spawned units into the queue, and at most
    ``queue_size`` of them may wait for room at a time. Past that, spawn()
    blocks the calling unit, which throttles recursive fan-out.

    A spawned unit is outstanding from the moment spawn() accepts it, so
    join() only returns once the queue is empty and nothing is running.
    """

    def __init__(self, workers: int = DEFAULT_WORKERS, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if workers < 1 or queue_size < 1:
            raise ValueError("workers and queue_size must be positive")
        self._queue: queue.Queue[Optional[_Unit]] = queue.Queue(maxsize=queue_size)
        self._width = workers

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)

        # Spawned units waiting for the feeder; the flag says whether the
        # unit holds one of the ``queue_size`` hand-off slots.
        self._handoff: Deque[Tuple[_Unit, bool]] = deque()
        self._free_slots = queue_size
        self._blocked_spawns = 0

        self._outstanding = 0
        self._in_flight = 0
        self._threads: List[threading.Thread] = []
        self._feeder: Optional[threading.Thread] = None
        self._running = False

        self.completed = 0
        self.config_errors: List[ConfigError] = []
        self.unit_errors: List[Exception] = []

    def start(self) -> None:
        with self._cv:
            if self._running:
                return
            self._running = True
        for i in range(self._width):
            thread = threading.Thread(target=self._worker, name=f"scrapepipe-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        self._feeder = threading.Thread(target=self._feed, name="scrapepipe-feeder", daemon=True)
        self._feeder.start()

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """Enqueue a unit, blocking while the queue is full."""
        self._reserve()
        try:
            self._queue.put((fn, args))
        except BaseException:
            self._release()
            raise

    def spawn(self, fn: Callable[..., Any], *args: Any) -> None:
        """Enqueue a unit from inside a running unit.

        Blocks while every hand-off slot is taken. If every running unit is
        blocked here, nothing is left to drain the queue, so one caller at a
        time is let through past the limit instead of deadlocking.
        """
        with self._cv:
            if not self._running:
                raise RuntimeError("Scheduler is not running")
            self._outstanding += 1
            self._blocked_spawns += 1
            while self._free_slots == 0 and self._blocked_spawns < max(self._in_flight, 1):
                self._cv.wait()
            self._blocked_spawns -= 1
            held = self._free_slots > 0
            if held:
                self._free_slots -= 1
            else:
                logger.debug("All running units are spawning; handing off past the queue limit")
            self._handoff.append(((fn, args), held))
            self._cv.notify_all()

    def join(self) -> None:
        """Wait until the queue is empty and no unit is outstanding, then stop the workers."""
        with self._cv:
            while self._outstanding > 0:
                self._cv.wait()
            self._running = False
            self._cv.notify_all()
        if self._feeder is not None:
            self._feeder.join()
            self._feeder = None
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join()
        self._threads = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def outstanding(self) -> int:
        return self._outstanding

    @property
    def blocked_spawns(self) -> int:
        """spawn() calls currently waiting for a hand-off slot."""
        with self._cv:
            return self._blocked_spawns

    def _reserve(self) -> None:
        with self._cv:
            if not self._running:
                raise RuntimeError("Scheduler is not running")
            self._outstanding += 1

    def _release(self) -> None:
        with self._cv:
            self._outstanding -= 1
            self._cv.notify_all()

    def _feed(self) -> None:
        while True:
            with self._cv:
                while not self._handoff and self._running:
                    self._cv.wait()
                if not self._handoff:
                    return
                unit, held = self._handoff.popleft()
            self._queue.put(unit)
            if held:
                with self._cv:
                    self._free_slots += 1
                    self._cv.notify_all()

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            fn, args = item
            with self._cv:
                self._in_flight += 1
            try:
                fn(*args)
            except ConfigError as exc:
                logger.error("Unit aborted by configuration error: %s", exc)
                with self._cv:
                    self.config_errors.append(exc)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unit failed: %s", exc)
                with self._cv:
                    self.unit_errors.append(exc)
            finally:
                with self._cv:
                    self._in_flight -= 1
                    self.completed += 1
                self._release()


def for_each_concurrent(fn: Callable[[T], Any], items: Iterable[T], limit: int) -> None:
    """Call ``fn`` on every item with at most ``limit`` calls running at once.

    Items are pulled lazily, so a long plan is never materialized up front.
    A single item (or ``limit`` of 1) runs on the calling thread. The first
    exception raised by ``fn`` propagates once running calls finish.
    """
    iterator = iter(items)
    first = next(iterator, _DONE)
    if first is _DONE:
        return
    second = next(iterator, _DONE)
    if second is _DONE or limit <= 1:
        fn(first)
        if second is not _DONE:
            for item in itertools.chain((second,), iterator):
                fn(item)
        return

    with ThreadPoolExecutor(max_workers=limit) as executor:
        pending: Set[Future] = set()
        for item in itertools.chain((first, second), iterator):
            if len(pending) >= limit:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                _raise_first(done)
            pending.add(executor.submit(fn, item))
        done, _ = wait(pending)
        _raise_first(done)


def _raise_first(done: Set[Future]) -> None:
    for future in done:
        future.result()
