from __future__ import annotations

import unittest

from mailroom.observability.telemetry import (
    counter,
    get_counter,
    get_latency_stats,
    reset_counters,
    reset_latencies,
    time_block,
)


class TelemetryTests(unittest.TestCase):
    def setUp(self):
        reset_latencies()
        reset_counters()

    def test_time_block_appends_ms_suffix(self):
        with time_block("ocr.extract"):
            pass

        stats = get_latency_stats("ocr.extract_ms")
        self.assertEqual(stats["count"], 1)
        self.assertGreaterEqual(stats["p95"], 0.0)

    def test_time_block_respects_existing_suffix(self):
        with time_block("scan.capture_ms"):
            pass

        self.assertEqual(get_latency_stats("scan.capture")["count"], 1)

    def test_time_block_records_on_error(self):
        with self.assertRaises(RuntimeError), time_block("ocr.extract"):
            raise RuntimeError("tesseract crashed")

        self.assertEqual(get_latency_stats("ocr.extract")["count"], 1)

    def test_empty_stats(self):
        self.assertEqual(get_latency_stats("never.timed")["count"], 0)

    def test_counter_increments(self):
        before = counter("test.counter", 0)
        counter("test.counter")
        self.assertEqual(get_counter("test.counter"), before + 1)

    def test_reset_counters(self):
        counter("test.counter", 5)
        reset_counters()
        self.assertEqual(get_counter("test.counter"), 0)


if __name__ == "__main__":
    unittest.main()
