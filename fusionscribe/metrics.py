"""
Thread-safe metrics logging with batched writes.

Usage:
    metrics = MetricsWriter(config.metrics_file)
    metrics.log("fusion", strategy="best-confidence", confidence=0.9)
"""

import json
import time
import threading
from queue import Queue, Empty
from pathlib import Path
from typing import Any, Optional

from .types import ActiveAppInfo, AppRule, FusionResult


class MetricsWriter:
    """
    Thread-safe metrics writer with atomic appends.
    Uses a queue to batch writes from multiple threads.
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = metrics_file
        self._queue: Queue[dict] = Queue()
        self._shutdown = threading.Event()
        self._writer_thread = threading.Thread(target=self._writer_loop, daemon=True)
        self._writer_thread.start()

    def log(self, event: str, **kwargs: Any) -> None:
        """
        Queue a metric for writing. Non-blocking.

        Args:
            event: Event name (e.g., "recording_started", "fusion", "rule_changed")
            **kwargs: Additional fields to log
        """
        entry = {
            "ts": time.time(),
            "event": event,
            **kwargs
        }
        self._queue.put(entry)

    def _writer_loop(self) -> None:
        """Background thread that batches and writes metrics."""
        while not self._shutdown.is_set():
            try:
                # Wait for first entry
                entries = [self._queue.get(timeout=1.0)]

                # Drain queue (batch writes)
                while True:
                    try:
                        entries.append(self._queue.get_nowait())
                    except Empty:
                        break

                self._write_entries(entries)

            except Empty:
                # Timeout, check shutdown flag and continue
                continue

    def _write_entries(self, entries: list[dict]) -> None:
        """Write entries to file."""
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)

            with open(self.metrics_file, "a") as f:
                for entry in entries:
                    f.write(json.dumps(entry, default=str) + "\n")
        except OSError as e:
            print(f"[Metrics] Failed to write metrics: {e}")

    def flush(self) -> None:
        """Flush any pending metrics to disk."""
        entries = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except Empty:
                break

        if entries:
            self._write_entries(entries)

    def shutdown(self) -> None:
        """Shutdown the writer thread gracefully."""
        self._shutdown.set()
        self._writer_thread.join(timeout=2.0)
        self.flush()


# Global instance (initialized lazily)
_metrics: MetricsWriter | None = None


def get_metrics(metrics_file: Path) -> MetricsWriter:
    """Get or create the global metrics writer."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsWriter(metrics_file)
    return _metrics


# Typed helper functions for consistent event logging.
# All of them accept metrics=None so callers can log unconditionally.

def log_recording_started(metrics: Optional[MetricsWriter], owner: str) -> None:
    """Log recording_started event."""
    if metrics:
        metrics.log("recording_started", owner=owner)


def log_recording_stopped(
    metrics: Optional[MetricsWriter],
    owner: str,
    reason: str,
    duration_ms: float,
) -> None:
    """Log recording_stopped event (reason: silence | max_duration | stop | error)."""
    if metrics:
        metrics.log(
            "recording_stopped",
            owner=owner,
            reason=reason,
            duration_ms=duration_ms,
        )


def log_fusion_result(metrics: Optional[MetricsWriter], result: FusionResult) -> None:
    """Log one fusion event plus one provider_result event per provider."""
    if not metrics:
        return
    for r in result.results:
        metrics.log(
            "provider_result",
            provider=r.provider,
            success=r.success,
            confidence=r.confidence,
            processing_time_ms=r.processing_time_ms,
            error=r.error,
            text=r.transcript[:200],
        )
    metrics.log(
        "fusion",
        strategy=result.strategy,
        confidence=result.confidence,
        providers_used=result.providers_used,
        processing_time_ms=result.processing_time_ms,
        text=result.final_transcript[:500],
    )


def log_fusion_failed(metrics: Optional[MetricsWriter], error: str) -> None:
    """Log fusion_failed event."""
    if metrics:
        metrics.log("fusion_failed", error=error)


def log_rule_changed(
    metrics: Optional[MetricsWriter],
    app: Optional[ActiveAppInfo],
    rule: Optional[AppRule],
) -> None:
    """Log rule_changed event."""
    if metrics:
        metrics.log(
            "rule_changed",
            app=app.name if app else None,
            executable=app.executable if app else None,
            rule_id=rule.id if rule else None,
        )


def log_dictation_event(metrics: Optional[MetricsWriter], action: str, **kwargs: Any) -> None:
    """Log dictation event (action: start | stop | pause | resume | command | restart)."""
    if metrics:
        metrics.log("dictation", action=action, **kwargs)
