"""
Tests for SessionContext, the scheduler and metrics helpers.
"""

import json
import threading

import pytest
from unittest.mock import Mock


class TestSessionContext:
    """The single recording flag."""

    def test_single_claim(self):
        from fusionscribe.state import SessionContext

        context = SessionContext(clock=lambda: 12.5)

        session = context.try_begin_recording("voice-activation")
        assert session.owner == "voice-activation"
        assert session.started_at == 12.5
        assert context.try_begin_recording("manual") is None
        assert context.recording_owner() == "voice-activation"

    def test_only_owner_releases(self):
        from fusionscribe.state import SessionContext

        context = SessionContext()
        session = context.try_begin_recording("dictation")

        assert context.end_recording("manual") is False
        assert context.is_recording is True
        assert context.end_recording("dictation") is True
        assert session.is_active is False
        assert context.recording is None

    def test_concurrent_claims(self):
        from fusionscribe.state import SessionContext

        context = SessionContext()
        barrier = threading.Barrier(8)
        winners = []

        def claim(i):
            barrier.wait()
            if context.try_begin_recording(f"owner-{i}") is not None:
                winners.append(i)

        threads = [threading.Thread(target=claim, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1

    def test_active_rule_change_detection(self):
        from fusionscribe.state import SessionContext
        from fusionscribe.types import AppRule

        context = SessionContext()
        rule = AppRule(id="r", app_name_pattern="Code")

        assert context.set_active_rule(rule) is True
        assert context.set_active_rule(rule) is False
        assert context.set_active_rule(None) is True

    def test_audio_level_is_lock_protected(self):
        from fusionscribe.state import SessionContext

        context = SessionContext()
        with context._lock:
            writer = threading.Thread(target=context.set_audio_level, args=(42.0,))
            writer.start()
            writer.join(0.1)
            assert writer.is_alive()

        writer.join(2.0)
        assert context.audio_level == 42.0


class TestScheduler:
    """ScheduledTask and ThreadingScheduler."""

    def test_cancelled_task_never_runs(self):
        from fusionscribe.scheduler import ScheduledTask

        fn = Mock()
        task = ScheduledTask(fn)
        task.cancel()
        task.cancel()
        task.run()

        fn.assert_not_called()
        assert task.cancelled is True

    def test_task_runs_once(self):
        from fusionscribe.scheduler import ScheduledTask

        fn = Mock()
        task = ScheduledTask(fn)
        task.run()
        task.run()

        fn.assert_called_once()
        assert task.fired is True

    def test_task_error_is_contained(self):
        from fusionscribe.scheduler import ScheduledTask

        task = ScheduledTask(Mock(side_effect=RuntimeError("boom")))
        task.run()

        assert task.fired is True

    def test_threading_scheduler_runs(self):
        from fusionscribe.scheduler import ThreadingScheduler

        done = threading.Event()
        ThreadingScheduler().schedule(0.01, done.set)

        assert done.wait(2.0)

    def test_threading_scheduler_cancel(self):
        from fusionscribe.scheduler import ThreadingScheduler

        fn = Mock()
        task = ThreadingScheduler().schedule(0.2, fn)
        task.cancel()

        threading.Event().wait(0.4)
        fn.assert_not_called()


class TestMetrics:
    """MetricsWriter and the event helpers."""

    def test_writes_jsonl(self, tmp_path):
        from fusionscribe.metrics import MetricsWriter, log_recording_stopped

        metrics_file = tmp_path / "metrics.jsonl"
        metrics = MetricsWriter(metrics_file)

        log_recording_stopped(metrics, "voice-activation", "silence", 2500.0)
        metrics.shutdown()

        entries = [json.loads(line) for line in metrics_file.read_text().splitlines()]
        assert len(entries) == 1
        assert entries[0]["event"] == "recording_stopped"
        assert entries[0]["reason"] == "silence"
        assert entries[0]["owner"] == "voice-activation"

    def test_helpers_accept_none(self):
        from fusionscribe.metrics import (
            log_dictation_event, log_fusion_failed, log_recording_started, log_rule_changed,
        )

        log_recording_started(None, "manual")
        log_fusion_failed(None, "error")
        log_rule_changed(None, None, None)
        log_dictation_event(None, "start")
