"""Tests for the bounded scheduler and the concurrent-iteration helper."""

import threading
import time
import unittest

from scrapepipe.errors import ConfigError
from scrapepipe.scheduler import Scheduler, for_each_concurrent


class TestScheduler(unittest.TestCase):
    """Verify backpressure, recursive spawning and shutdown."""

    def test_backpressure_with_single_slot(self):
        """Capacity 1 and width 1: never more than one queued and one running."""
        scheduler = Scheduler(workers=1, queue_size=1)
        scheduler.start()
        lock = threading.Lock()
        seen = {"pending": 0, "in_flight": 0, "ran": 0}

        def unit():
            with lock:
                seen["pending"] = max(seen["pending"], scheduler.pending)
                seen["in_flight"] = max(seen["in_flight"], scheduler.in_flight)
                seen["ran"] += 1
            time.sleep(0.02)

        seeder = threading.Thread(target=lambda: [scheduler.submit(unit) for _ in range(3)])
        seeder.start()
        seeder.join(timeout=5)
        scheduler.join()

        self.assertEqual(seen["ran"], 3)
        self.assertEqual(seen["in_flight"], 1)
        self.assertLessEqual(seen["pending"], 1)

    def test_join_waits_for_recursive_spawns(self):
        """A recursive tree wider than the queue still completes before join returns."""
        scheduler = Scheduler(workers=2, queue_size=1)
        scheduler.start()
        lock = threading.Lock()
        ran = []

        def unit(depth):
            with lock:
                ran.append(depth)
            if depth < 3:
                for _ in range(2):
                    scheduler.spawn(unit, depth + 1)

        scheduler.submit(unit, 0)
        scheduler.join()

        # 1 + 2 + 4 + 8
        self.assertEqual(len(ran), 15)
        self.assertEqual(scheduler.outstanding, 0)
        self.assertEqual(scheduler.completed, 15)

    def test_spawn_blocks_when_queue_and_handoff_are_full(self):
        """A fanning-out unit waits for room instead of piling up threads."""
        scheduler = Scheduler(workers=2, queue_size=1)
        baseline = threading.active_count()
        scheduler.start()
        started = threading.Event()
        release = threading.Event()
        lock = threading.Lock()
        state = {"spawned": 0, "children": 0}

        def child():
            started.set()
            release.wait(timeout=10)
            with lock:
                state["children"] += 1

        def parent():
            for i in range(300):
                scheduler.spawn(child)
                with lock:
                    state["spawned"] += 1
                if i == 0:
                    # keep the second worker busy so two units are in flight
                    started.wait(timeout=5)

        scheduler.submit(parent)
        deadline = time.monotonic() + 5
        while scheduler.blocked_spawns == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        # One child running, one queued, one held by the feeder.
        self.assertEqual(scheduler.blocked_spawns, 1)
        self.assertEqual(state["spawned"], 3)
        self.assertEqual(scheduler.pending, 1)
        # Two workers plus the feeder thread.
        self.assertLessEqual(threading.active_count(), baseline + 3)

        release.set()
        scheduler.join()

        self.assertEqual(state["children"], 300)
        self.assertEqual(scheduler.completed, 301)
        self.assertLessEqual(threading.active_count(), baseline)

    def test_single_worker_spawning_past_capacity_does_not_deadlock(self):
        """With every running unit blocked in spawn, hand-off continues past the limit."""
        scheduler = Scheduler(workers=1, queue_size=1)
        scheduler.start()
        ran = []

        def parent():
            for i in range(20):
                scheduler.spawn(ran.append, i)

        scheduler.submit(parent)
        scheduler.join()

        self.assertEqual(sorted(ran), list(range(20)))

    def test_failures_are_recorded_and_do_not_stop_workers(self):
        scheduler = Scheduler(workers=1, queue_size=2)
        scheduler.start()
        done = []

        def bad_config():
            raise ConfigError("unreachable")

        def crash():
            raise RuntimeError("boom")

        scheduler.submit(bad_config)
        scheduler.submit(crash)
        scheduler.submit(done.append, 1)
        scheduler.join()

        self.assertEqual(done, [1])
        self.assertEqual(len(scheduler.config_errors), 1)
        self.assertEqual(len(scheduler.unit_errors), 1)

    def test_submit_requires_start(self):
        scheduler = Scheduler(workers=1, queue_size=1)
        with self.assertRaises(RuntimeError):
            scheduler.submit(print)

    def test_invalid_sizes(self):
        with self.assertRaises(ValueError):
            Scheduler(workers=0)
        with self.assertRaises(ValueError):
            Scheduler(queue_size=0)


class TestForEachConcurrent(unittest.TestCase):
    """Verify the width limit and error propagation."""

    def test_limit_is_respected(self):
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}
        visited = []

        def fn(item):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
                visited.append(item)
            time.sleep(0.01)
            with lock:
                state["running"] -= 1

        for_each_concurrent(fn, range(10), limit=3)

        self.assertEqual(sorted(visited), list(range(10)))
        self.assertLessEqual(state["peak"], 3)

    def test_single_item_runs_inline(self):
        threads = []
        for_each_concurrent(lambda _: threads.append(threading.current_thread()), ["only"], limit=5)
        self.assertEqual(threads, [threading.current_thread()])

    def test_empty_iterable(self):
        calls = []
        for_each_concurrent(calls.append, [], limit=4)
        self.assertEqual(calls, [])

    def test_first_error_propagates(self):
        def fn(item):
            if item == 2:
                raise ValueError("bad item")

        with self.assertRaises(ValueError):
            for_each_concurrent(fn, range(5), limit=2)


if __name__ == "__main__":
    unittest.main()
