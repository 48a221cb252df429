"""Per-run performance recording.

Collects stage timings, per-operation success/failure counts, throughput and
process memory high-water marks for one workflow run. Instantiate one
recorder per run and hand it to the workflow; nothing here is global.

Usage:
    recorder = PerformanceMetricsRecorder(run_id="run-1")
    recorder.start_stage("save", input_count=40)
    ...
    recorder.end_stage("save", output_count=38)
    report = recorder.get_report()
"""

import time
import uuid
from collections import deque
from dataclasses import dataclass, asdict
from typing import Any, Deque, Dict, Optional

import psutil
import structlog

logger = structlog.get_logger()

MAX_STAGES = 1000


@dataclass(frozen=True)
class MemorySnapshot:
    timestamp: float
    rss_bytes: int
    vms_bytes: int


@dataclass(frozen=True)
class StageMetrics:
    """Timing and memory figures for one completed stage."""

    stage_name: str
    duration_seconds: float
    input_count: int
    output_count: int
    pass_rate: float
    throughput_per_second: float
    memory_before: MemorySnapshot
    memory_after: MemorySnapshot

    @property
    def memory_delta_bytes(self) -> int:
        return self.memory_after.rss_bytes - self.memory_before.rss_bytes


@dataclass
class OperationStats:
    count: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_seconds: float = 0.0
    max_seconds: float = 0.0

    @property
    def average_seconds(self) -> float:
        return self.total_seconds / self.count if self.count else 0.0


class PerformanceMetricsRecorder:
    """Records stage and operation performance for a single workflow run."""

    def __init__(self, run_id: Optional[str] = None) -> None:
        self.run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        self._process = psutil.Process()
        self._started_at = time.monotonic()
        self._stages: Deque[StageMetrics] = deque(maxlen=MAX_STAGES)
        self._operations: Dict[str, OperationStats] = {}
        self._current: Optional[Dict[str, Any]] = None
        self._peak_rss_bytes = 0
        self.capture_memory()

    def capture_memory(self) -> MemorySnapshot:
        """Take an RSS/VMS snapshot and update the high-water mark."""
        info = self._process.memory_info()
        snapshot = MemorySnapshot(
            timestamp=time.time(), rss_bytes=info.rss, vms_bytes=info.vms
        )
        if snapshot.rss_bytes > self._peak_rss_bytes:
            self._peak_rss_bytes = snapshot.rss_bytes
        return snapshot

    @property
    def peak_rss_bytes(self) -> int:
        return self._peak_rss_bytes

    def start_stage(self, stage_name: str, input_count: int = 0) -> None:
        """Begin timing a stage.

        A stage still open from an earlier call is closed first with its
        output count equal to its input count.
        """
        if self._current is not None:
            logger.warning(
                "stage_not_ended",
                stage=self._current["name"],
                next_stage=stage_name,
            )
            self.end_stage(self._current["name"], self._current["input_count"])

        self._current = {
            "name": stage_name,
            "started": time.monotonic(),
            "input_count": max(0, input_count),
            "memory_before": self.capture_memory(),
        }

    def end_stage(self, stage_name: str, output_count: int) -> StageMetrics:
        """Close the active stage and return its metrics.

        Raises:
            RuntimeError: If no stage is active
        """
        if self._current is None:
            raise RuntimeError(
                f"Cannot end stage '{stage_name}': no stage is currently active"
            )
        if self._current["name"] != stage_name:
            logger.warning(
                "stage_name_mismatch",
                expected=self._current["name"],
                got=stage_name,
            )

        duration = time.monotonic() - self._current["started"]
        input_count = self._current["input_count"]
        output_count = max(0, output_count)
        pass_rate = (output_count / input_count * 100.0) if input_count else 100.0
        throughput = input_count / duration if duration > 0 else 0.0

        metrics = StageMetrics(
            stage_name=self._current["name"],
            duration_seconds=duration,
            input_count=input_count,
            output_count=output_count,
            pass_rate=pass_rate,
            throughput_per_second=throughput,
            memory_before=self._current["memory_before"],
            memory_after=self.capture_memory(),
        )
        self._stages.append(metrics)
        self._current = None

        logger.debug(
            "stage_metrics_recorded",
            stage=metrics.stage_name,
            duration_seconds=round(duration, 3),
            input_count=input_count,
            output_count=output_count,
            memory_delta_bytes=metrics.memory_delta_bytes,
        )
        return metrics

    def record_operation(
        self, operation: str, duration_seconds: float, success: bool
    ) -> None:
        """Record one timed operation (e.g. a single save or fetch)."""
        stats = self._operations.setdefault(operation, OperationStats())
        stats.count += 1
        if success:
            stats.success_count += 1
        else:
            stats.failure_count += 1
        duration = max(0.0, duration_seconds)
        stats.total_seconds += duration
        stats.max_seconds = max(stats.max_seconds, duration)

    def get_stages(self) -> list[StageMetrics]:
        return list(self._stages)

    def get_operation_stats(self, operation: str) -> Optional[OperationStats]:
        return self._operations.get(operation)

    def get_report(self) -> Dict[str, Any]:
        """Summarize everything recorded so far as a plain dict."""
        self.capture_memory()
        total_items = sum(s.count for s in self._operations.values())
        total_success = sum(s.success_count for s in self._operations.values())
        elapsed = time.monotonic() - self._started_at

        return {
            "run_id": self.run_id,
            "elapsed_seconds": elapsed,
            "peak_rss_bytes": self._peak_rss_bytes,
            "success_rate": (total_success / total_items * 100.0)
            if total_items
            else 0.0,
            "stages": [
                {**asdict(s), "memory_delta_bytes": s.memory_delta_bytes}
                for s in self._stages
            ],
            "operations": {
                name: {**asdict(stats), "average_seconds": stats.average_seconds}
                for name, stats in self._operations.items()
            },
        }
