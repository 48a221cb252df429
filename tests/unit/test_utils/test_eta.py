"""Unit tests for ETA estimation"""

import pytest

from litflow.models.config import ETAConfig
from litflow.utils.eta import ETAEstimator, format_duration
from litflow.utils.exceptions import ConfigurationError


@pytest.fixture
def estimator():
    """Create estimator with a small window."""
    return ETAEstimator(window_size=5, min_samples=3)


class TestFormatDuration:
    """Tests for human-readable durations."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0, "< 1s"),
            (0.4, "< 1s"),
            (1, "1s"),
            (45.9, "45s"),
            (60, "1m"),
            (120, "2m"),
            (150, "2m 30s"),
            (3599, "59m 59s"),
            (3600, "1h"),
            (5400, "1h 30m"),
            (86399, "23h 59m"),
            (86400, "> 24h"),
            (90000, "> 24h"),
        ],
    )
    def test_formats(self, seconds, expected):
        """Test boundary formatting."""
        assert format_duration(seconds) == expected


class TestETAEstimatorInit:
    """Tests for estimator construction."""

    def test_defaults_from_config(self):
        """Test defaults come from ETAConfig."""
        est = ETAEstimator()
        assert est.window_size == 10
        assert est.min_samples == 3

    def test_config_values_used(self):
        """Test config object is honoured."""
        est = ETAEstimator(config=ETAConfig(window_size=4, min_samples=2))
        assert est.window_size == 4
        assert est.min_samples == 2

    @pytest.mark.parametrize("kwargs", [{"window_size": 0}, {"min_samples": 0}])
    def test_rejects_non_positive(self, kwargs):
        """Test invalid window settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ETAEstimator(**kwargs)


class TestRecording:
    """Tests for sample recording."""

    def test_ignores_non_positive_durations(self, estimator):
        """Test zero and negative durations are dropped."""
        estimator.record_completion(5.0, 5.0)
        estimator.record_completion(5.0, 4.0)
        assert estimator.sample_count == 0

    def test_window_keeps_most_recent(self, estimator):
        """Test the oldest sample is evicted once the window is full."""
        for duration in [100.0, 1.0, 1.0, 1.0, 1.0, 1.0]:
            estimator.record_duration(duration)

        assert estimator.sample_count == 5
        assert estimator.get_estimate(0, 1).average_task_seconds == 1.0

    def test_reset_clears_samples(self, estimator):
        """Test reset empties the window."""
        estimator.record_duration(2.0)
        estimator.reset()
        assert estimator.sample_count == 0


class TestGetEstimate:
    """Tests for get_estimate."""

    def test_no_samples_is_calculating(self, estimator):
        """Test no samples yields an unreliable placeholder."""
        eta = estimator.get_estimate(0, 10)
        assert eta.formatted == "Calculating..."
        assert eta.estimated_seconds == 0.0
        assert eta.is_reliable is False

    def test_average_times_remaining(self, estimator):
        """Test three one-second tasks with 7 remaining estimate 7 seconds."""
        for start in (0.0, 1.0, 2.0):
            estimator.record_completion(start, start + 1.0)

        eta = estimator.get_estimate(3, 10)

        assert eta.average_task_seconds == 1.0
        assert eta.estimated_seconds == 7.0
        assert eta.formatted == "7s"
        assert eta.samples_used == 3
        assert eta.is_reliable is True

    def test_unreliable_below_min_samples(self, estimator):
        """Test fewer than min_samples gives an unreliable estimate."""
        estimator.record_duration(2.0)
        eta = estimator.get_estimate(1, 10)
        assert eta.estimated_seconds == 18.0
        assert eta.is_reliable is False

    def test_complete(self, estimator):
        """Test completed == total is reported as Complete."""
        estimator.record_duration(1.0)
        eta = estimator.get_estimate(10, 10)
        assert eta.estimated_seconds == 0.0
        assert eta.formatted == "Complete"
        assert eta.is_reliable is True

    def test_complete_without_samples(self, estimator):
        """Test Complete takes precedence over Calculating."""
        assert estimator.get_estimate(0, 0).formatted == "Complete"
