"""
Tests for the per-connection progress tracker.
"""

from unittest.mock import patch

from storesync.sync.progress import ProgressTracker


class TestProgressTracker:

    def test_unknown_connection_is_idle(self):
        status = ProgressTracker().get("nope")

        assert status.status == "idle"
        assert status.progress == 0
        assert status.message == "No sync in progress"

    def test_second_start_rejected_while_running(self):
        tracker = ProgressTracker()

        assert tracker.try_start("a") is not None
        assert tracker.try_start("a") is None
        # Other connections are independent
        assert tracker.try_start("b") is not None

    def test_restart_allowed_after_finish(self):
        tracker = ProgressTracker()
        token = tracker.try_start("a")
        tracker.complete("a", token, "done")

        assert tracker.try_start("a") is not None

    def test_only_token_holder_writes(self):
        tracker = ProgressTracker()
        token = tracker.try_start("a")

        assert not tracker.update("a", "someone-else", 50, "hijack")
        assert tracker.update("a", token, 40, "Syncing catalog...")

        status = tracker.get("a")
        assert status.progress == 40
        assert status.message == "Syncing catalog..."

    def test_stale_run_cannot_overwrite_new_run(self):
        tracker = ProgressTracker()
        old = tracker.try_start("a")
        tracker.fail("a", old, "boom")
        new = tracker.try_start("a")

        assert not tracker.complete("a", old, "late")
        assert tracker.get("a").status == "running"
        assert tracker.complete("a", new, "fine")

    def test_progress_is_clamped(self):
        tracker = ProgressTracker()
        token = tracker.try_start("a")
        tracker.update("a", token, 250, "over")

        assert tracker.get("a").progress == 100

    def test_fail_records_error(self):
        tracker = ProgressTracker()
        token = tracker.try_start("a")
        tracker.fail("a", token, "transactions: timed out", report={'connection_id': 'a'})

        status = tracker.get("a")
        assert status.status == "error"
        assert status.error == "transactions: timed out"
        assert status.report == {'connection_id': 'a'}
        assert status.end_time is not None

    def test_finished_entries_evicted_after_retention(self):
        tracker = ProgressTracker(retention_seconds=60)
        with patch("storesync.sync.progress.time.time", return_value=1000.0):
            token = tracker.try_start("a")
            tracker.complete("a", token, "done")

        with patch("storesync.sync.progress.time.time", return_value=1030.0):
            assert tracker.get("a").status == "completed"

        with patch("storesync.sync.progress.time.time", return_value=1100.0):
            assert tracker.get("a").status == "idle"

    def test_running_entries_never_evicted(self):
        tracker = ProgressTracker(retention_seconds=1)
        with patch("storesync.sync.progress.time.time", return_value=1000.0):
            tracker.try_start("a")

        with patch("storesync.sync.progress.time.time", return_value=5000.0):
            assert tracker.get("a").status == "running"

    def test_get_returns_copy(self):
        tracker = ProgressTracker()
        tracker.try_start("a")
        snapshot = tracker.get("a")
        snapshot.progress = 99

        assert tracker.get("a").progress == 0
