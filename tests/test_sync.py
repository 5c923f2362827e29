import sys
import tempfile
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from callwalk.errors import StorageError, StorageQuotaError
from callwalk.store.storage import JsonFileStorage, MemoryStorage
from callwalk.store.sync import (
    UPDATE_MARKER_KEY,
    ChangeChannel,
    ChangeEvent,
    ChangeKind,
    RemoteChangeWatcher,
    Scheduler,
    UpdateNotifier,
    WriteQueue,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FailingStorage(MemoryStorage):
    def __init__(self, bad_key):
        super().__init__()
        self.bad_key = bad_key

    def set(self, key, value):
        if key == self.bad_key:
            raise StorageError(f"disk full for {key}")
        super().set(key, value)


class TestScheduler(unittest.TestCase):
    def test_runs_due_timers_in_deadline_order(self):
        clock = FakeClock()
        scheduler = Scheduler(clock)
        fired = []
        scheduler.call_later(0.2, lambda: fired.append("late"))
        scheduler.call_later(0.1, lambda: fired.append("early"))
        cancelled = scheduler.call_later(0.1, lambda: fired.append("cancelled"))
        cancelled.cancel()

        self.assertEqual(scheduler.run_pending(), 0)
        clock.advance(0.15)
        self.assertEqual(scheduler.run_pending(), 1)
        clock.advance(0.1)
        scheduler.run_pending()
        self.assertEqual(fired, ["early", "late"])
        self.assertIsNone(scheduler.next_deadline())


class TestWriteQueue(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = Scheduler(self.clock)
        self.storage = MemoryStorage()
        self.queue = WriteQueue(self.storage, self.scheduler, delay=0.25)

    def test_burst_coalesces_into_one_write_per_key(self):
        for value in range(10):
            self.queue.save("steps", value)
            self.clock.advance(0.1)
            self.scheduler.run_pending()
        self.queue.save("products", ["p"])
        self.assertEqual(self.storage.write_log, [])

        self.clock.advance(0.25)
        self.scheduler.run_pending()
        self.assertEqual(self.storage.write_log, ["steps", "products"])
        self.assertEqual(self.storage.get("steps"), 9)

    def test_flush_forces_write_and_cancel_drops(self):
        self.queue.save("a", 1)
        self.assertEqual(self.queue.flush(), ["a"])
        self.queue.save("b", 2)
        self.queue.cancel()
        self.clock.advance(1)
        self.scheduler.run_pending()
        self.assertIsNone(self.storage.get("b"))
        self.assertEqual(self.queue.pending_keys(), [])

    def test_failing_key_is_dropped_alone(self):
        queue = WriteQueue(FailingStorage("bad"), self.scheduler)
        queue.save("bad", 1)
        queue.save("good", 2)
        with self.assertLogs("callwalk.store.sync", level="ERROR"):
            written = queue.flush()
        self.assertEqual(written, ["good"])
        self.assertEqual(queue.failed_keys, ["bad"])
        self.assertEqual(queue.pending_keys(), [])

    def test_unexpected_backend_error_keeps_other_keys(self):
        class FlakyBackend(MemoryStorage):
            def set(inner, key, value):
                if key == "a":
                    raise RuntimeError("remote down")
                MemoryStorage.set(inner, key, value)

        backend = FlakyBackend()
        queue = WriteQueue(backend, self.scheduler)
        queue.save("a", 1)
        queue.save("b", 2)
        with self.assertLogs("callwalk.store.sync", level="ERROR") as logs:
            written = queue.flush()
        self.assertEqual(written, ["b"])
        self.assertEqual(backend.get("b"), 2)
        self.assertEqual(queue.failed_keys, ["a"])
        self.assertIn("remote down", "\n".join(logs.output))

    def test_quota_error_is_logged(self):
        queue = WriteQueue(MemoryStorage(quota_bytes=8), self.scheduler)
        queue.save("big", "x" * 50)
        with self.assertLogs("callwalk.store.sync", level="ERROR") as logs:
            queue.flush()
        self.assertIn("quota", logs.output[0])

    def test_save_during_flush_waits_for_next_pass(self):
        storage = MemoryStorage()
        queue = WriteQueue(storage, self.scheduler)

        class Reentrant(MemoryStorage):
            def set(inner, key, value):
                storage.set(key, value)
                if key == "first":
                    queue.save("second", 2)

        queue.storage = Reentrant()
        queue.save("first", 1)
        self.assertEqual(queue.flush(), ["first"])
        self.assertEqual(queue.pending_keys(), ["second"])


class TestNotifier(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = Scheduler(self.clock)
        self.storage = MemoryStorage()
        self.channel = ChangeChannel()
        self.events = []
        self.channel.subscribe(self.events.append)
        self.notifier = UpdateNotifier(
            self.storage, self.scheduler, self.channel, delay=0.3, wall_clock=lambda: 12.5
        )

    def test_events_are_grouped_by_kind(self):
        self.notifier.notify(ChangeKind.STEP, ["s1"])
        self.clock.advance(0.2)
        self.scheduler.run_pending()
        self.notifier.notify(ChangeKind.STEP, ["s2"])
        self.notifier.notify(ChangeKind.PRODUCT, ["p1"])
        self.clock.advance(0.29)
        self.scheduler.run_pending()
        self.assertEqual(self.events, [])

        self.clock.advance(0.02)
        self.scheduler.run_pending()
        self.assertEqual(
            self.events,
            [
                ChangeEvent(ChangeKind.STEP, frozenset({"s1", "s2"})),
                ChangeEvent(ChangeKind.PRODUCT, frozenset({"p1"})),
            ],
        )
        marker = self.storage.get(UPDATE_MARKER_KEY)
        self.assertEqual(marker["at"], 12500)
        self.assertEqual(marker, self.notifier.last_marker)

    def test_subscriber_filter_and_failure(self):
        annotations = []

        def broken(event):
            raise RuntimeError("boom")

        self.channel.subscribe(broken)
        unsubscribe = self.channel.subscribe(annotations.append, kinds=[ChangeKind.ANNOTATION])
        self.notifier.notify(ChangeKind.STEP, ["s1"])
        self.notifier.notify(ChangeKind.ANNOTATION, ["s1"])
        with self.assertLogs("callwalk.store.sync", level="ERROR"):
            self.notifier.flush()
        self.assertEqual([event.kind for event in annotations], [ChangeKind.ANNOTATION])
        self.assertEqual(len(self.events), 2)

        unsubscribe()
        self.notifier.notify(ChangeKind.ANNOTATION, ["s2"])
        with self.assertLogs("callwalk.store.sync", level="ERROR"):
            self.notifier.flush()
        self.assertEqual(len(annotations), 1)

    def test_remote_watcher_ignores_own_marker(self):
        other_channel = ChangeChannel()
        remote_events = []
        other_channel.subscribe(remote_events.append)
        local_watcher = RemoteChangeWatcher(self.storage, self.channel, local=self.notifier)
        other_watcher = RemoteChangeWatcher(self.storage, other_channel)

        self.notifier.notify(ChangeKind.STEP, ["s1"])
        self.notifier.flush()

        self.assertFalse(local_watcher.poll())
        self.assertTrue(other_watcher.poll())
        self.assertFalse(other_watcher.poll())
        self.assertEqual(remote_events, [ChangeEvent(ChangeKind.REMOTE)])


class TestJsonFileStorage(unittest.TestCase):
    def test_round_trip_and_keys(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(Path(tmpdir) / "data")
            self.assertIsNone(storage.get("products"))
            storage.set("products", [{"name": "Habitacional"}])
            self.assertEqual(storage.get("products"), [{"name": "Habitacional"}])
            self.assertEqual(storage.keys(), ["products"])
            storage.delete("products")
            storage.delete("products")
            self.assertEqual(storage.keys(), [])

    def test_rejects_unsafe_keys_and_corrupt_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(Path(tmpdir))
            with self.assertRaises(StorageError):
                storage.set("../escape", 1)
            (Path(tmpdir) / "broken.json").write_text("{not json")
            with self.assertRaises(StorageError):
                storage.get("broken")

    def test_quota(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(Path(tmpdir), quota_bytes=4)
            with self.assertRaises(StorageQuotaError):
                storage.set("big", "too large")
            self.assertIsNone(storage.get("big"))


if __name__ == "__main__":
    unittest.main()
