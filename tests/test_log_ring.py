import threading
import unittest

from gamepanel.core.log_ring import LogRing


class LogRingTests(unittest.TestCase):
    def test_keeps_last_capacity_entries_oldest_first(self):
        ring = LogRing(capacity=3)
        for idx in range(5):
            ring.append(f"line {idx}")
        self.assertEqual(ring.snapshot(), ["line 2", "line 3", "line 4"])
        self.assertEqual(len(ring), 3)

    def test_snapshot_is_detached_copy(self):
        ring = LogRing(capacity=10)
        ring.append("first")
        snapshot = ring.snapshot()
        ring.append("second")
        snapshot.append("mutated")
        self.assertEqual(snapshot, ["first", "mutated"])
        self.assertEqual(ring.snapshot(), ["first", "second"])

    def test_rejects_non_positive_capacity(self):
        with self.assertRaises(ValueError):
            LogRing(capacity=0)

    def test_concurrent_appends_never_exceed_capacity(self):
        ring = LogRing(capacity=50)

        def writer(prefix):
            for idx in range(200):
                ring.append(f"{prefix}-{idx}")

        threads = [threading.Thread(target=writer, args=(name,)) for name in ("out", "err", "sys")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(ring.snapshot()), 50)


if __name__ == "__main__":
    unittest.main()
