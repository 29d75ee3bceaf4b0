"""Tests for the CrawlStats class."""

import unittest

from crawlkit.stats import CrawlStats


class TestCrawlStats(unittest.TestCase):
    """Verify counters and snapshots."""

    def test_empty_snapshot(self):
        """A fresh collector reports zeros."""
        snap = CrawlStats().snapshot()
        self.assertEqual(snap.queued, 0)
        self.assertEqual(snap.fetch_failed, 0)

    def test_incr(self):
        """Counters accumulate increments."""
        stats = CrawlStats()
        stats.incr("fetched")
        stats.incr("fetched", 2)
        self.assertEqual(stats.snapshot().fetched, 3)

    def test_unknown_counter_raises(self):
        """Typos in counter names are caught."""
        with self.assertRaises(KeyError):
            CrawlStats().incr("fetchd")

    def test_export_json(self):
        """export_json returns a plain dict of every counter."""
        exported = CrawlStats().export_json()
        self.assertIn("docs_stored", exported)
        self.assertIn("elapsed_secs", exported)


if __name__ == "__main__":
    unittest.main()
