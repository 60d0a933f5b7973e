"""
Interaction metrics collector for the CourseNav service.

Tracks: latency, throughput, per-verb and per-outcome counts, memory usage.
Logs structured entries to <metrics dir>/metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from collections import Counter
from pathlib import Path

import psutil

# Outcome kinds that count as failed interactions.
FAILURE_KINDS = frozenset({"validation_error", "stale_session", "encoding_error"})


class MetricsCollector:
    """Thread-safe interaction metrics tracker with JSONL file logging."""

    def __init__(self, log_dir: str | Path | None = None):
        self._lock = threading.Lock()
        self._start_time: float = time.time()

        # Counters.
        self._total_requests: int = 0
        self._total_latency_ms: float = 0.0
        self._error_count: int = 0
        self._min_latency_ms: float = float("inf")
        self._max_latency_ms: float = 0.0
        self._by_verb: Counter[str] = Counter()
        self._by_outcome: Counter[str] = Counter()

        # Logging.
        self._log_path: Path | None = None
        if log_dir is not None:
            log_root = Path(log_dir)
            log_root.mkdir(parents=True, exist_ok=True)
            self._log_path = log_root / "metrics.jsonl"

        # Process handle for memory tracking.
        self._process = psutil.Process(os.getpid())

    def record_interaction(self, verb: str, outcome_kind: str, latency_ms: float) -> None:
        """Records a single interaction's outcome and appends it to the JSONL log."""
        failed = outcome_kind in FAILURE_KINDS
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "verb": verb,
            "outcome": outcome_kind,
            "latency_ms": round(latency_ms, 2),
            "success": not failed,
        }

        with self._lock:
            self._total_requests += 1
            self._total_latency_ms += latency_ms
            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms
            if failed:
                self._error_count += 1
            self._by_verb[verb] += 1
            self._by_outcome[outcome_kind] += 1

        if self._log_path is None:
            return
        # Append to JSONL file outside the lock.
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=True) + "\n")
        except OSError:
            pass

    def get_summary(self) -> dict:
        """Returns a metrics snapshot."""
        with self._lock:
            total = self._total_requests
            avg_lat = (self._total_latency_ms / total) if total > 0 else 0.0
            min_lat = self._min_latency_ms if total > 0 else 0.0
            max_lat = self._max_latency_ms if total > 0 else 0.0
            errors = self._error_count
            by_verb = dict(self._by_verb)
            by_outcome = dict(self._by_outcome)

        uptime_s = time.time() - self._start_time
        throughput_rps = (total / uptime_s) if uptime_s > 0 else 0.0

        mem_info = self._process.memory_info()

        return {
            "latency": {
                "avg_ms": round(avg_lat, 2),
                "min_ms": round(min_lat, 2),
                "max_ms": round(max_lat, 2),
            },
            "throughput": {
                "total_requests": total,
                "requests_per_second": round(throughput_rps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_info.rss / (1024 * 1024), 1),
                "vms_mb": round(mem_info.vms / (1024 * 1024), 1),
            },
            "verbs": by_verb,
            "outcomes": by_outcome,
            "errors": {
                "count": errors,
                "rate_percent": round((errors / total * 100) if total > 0 else 0.0, 2),
            },
        }
