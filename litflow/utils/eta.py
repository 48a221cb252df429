"""Rolling-window ETA estimation for batch progress reporting."""

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from litflow.models.config import ETAConfig
from litflow.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class ETAEstimate:
    estimated_seconds: float
    formatted: str
    average_task_seconds: float
    samples_used: int
    is_reliable: bool


def format_duration(seconds: float) -> str:
    """Human-readable remaining time.

    Examples:
        0.4 -> "< 1s", 45 -> "45s", 120 -> "2m", 150 -> "2m 30s",
        3600 -> "1h", 5400 -> "1h 30m", 90000 -> "> 24h"
    """
    if seconds < 1:
        return "< 1s"
    if seconds < 60:
        return f"{math.floor(seconds)}s"
    if seconds < 3600:
        minutes = math.floor(seconds / 60)
        secs = math.floor(seconds % 60)
        return f"{minutes}m" if secs == 0 else f"{minutes}m {secs}s"
    if seconds < 86400:
        hours = math.floor(seconds / 3600)
        minutes = math.floor((seconds % 3600) / 60)
        return f"{hours}h" if minutes == 0 else f"{hours}h {minutes}m"
    return "> 24h"


class ETAEstimator:
    """Moving-average ETA over the most recent task durations.

    Durations of both successful and failed tasks feed the window, since
    both consume wall-clock time from the batch.
    """

    def __init__(
        self,
        window_size: Optional[int] = None,
        min_samples: Optional[int] = None,
        config: Optional[ETAConfig] = None,
    ) -> None:
        config = config or ETAConfig()
        self.window_size = window_size if window_size is not None else config.window_size
        self.min_samples = min_samples if min_samples is not None else config.min_samples
        if self.window_size <= 0 or self.min_samples <= 0:
            raise ConfigurationError(
                "ETA window_size and min_samples must be greater than 0",
                context={"window_size": self.window_size, "min_samples": self.min_samples},
            )
        self._samples: Deque[float] = deque(maxlen=self.window_size)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def record_completion(self, start: float, end: float) -> None:
        """Add one task's duration; non-positive durations are ignored."""
        self.record_duration(end - start)

    def record_duration(self, duration_seconds: float) -> None:
        if duration_seconds <= 0:
            return
        self._samples.append(duration_seconds)

    def get_estimate(self, completed: int, total: int) -> ETAEstimate:
        if completed >= total:
            return ETAEstimate(
                estimated_seconds=0.0,
                formatted="Complete",
                average_task_seconds=self._average(),
                samples_used=len(self._samples),
                is_reliable=True,
            )

        if not self._samples:
            return ETAEstimate(
                estimated_seconds=0.0,
                formatted="Calculating...",
                average_task_seconds=0.0,
                samples_used=0,
                is_reliable=False,
            )

        average = self._average()
        estimated = average * (total - completed)
        return ETAEstimate(
            estimated_seconds=estimated,
            formatted=format_duration(estimated),
            average_task_seconds=average,
            samples_used=len(self._samples),
            is_reliable=len(self._samples) >= self.min_samples,
        )

    def reset(self) -> None:
        self._samples.clear()

    def _average(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)
