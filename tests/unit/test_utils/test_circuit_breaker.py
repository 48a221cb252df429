"""Unit tests for the circuit breaker"""

import pytest
import time
from unittest.mock import AsyncMock

from litflow.utils.circuit_breaker import CircuitBreaker, CircuitState
from litflow.models.config import CircuitBreakerConfig
from litflow.observability.metrics import get_sample
from litflow.utils.exceptions import CircuitOpenError, ConfigurationError


@pytest.fixture
def circuit_config():
    """Create test circuit breaker configuration."""
    return CircuitBreakerConfig(
        failure_threshold=3,
        success_threshold=2,
        reset_timeout_seconds=0.1,
    )


@pytest.fixture
def circuit_breaker(circuit_config):
    """Create circuit breaker instance."""
    return CircuitBreaker("test-breaker", circuit_config)


def trip(cb: CircuitBreaker, times: int = 3) -> None:
    for _ in range(times):
        cb.record_failure()


class TestCircuitBreakerInit:
    """Tests for CircuitBreaker initialization."""

    def test_initial_state_is_closed(self, circuit_breaker):
        """Test initial state is CLOSED."""
        assert circuit_breaker.state == CircuitState.CLOSED

    def test_initial_counters_are_zero(self, circuit_breaker):
        """Test initial counters are zero."""
        assert circuit_breaker.failure_count == 0
        assert circuit_breaker.success_count == 0
        assert circuit_breaker.next_attempt_time is None

    def test_defaults_from_config(self):
        """Test defaults match the fetch dependency settings."""
        cb = CircuitBreaker("defaults")
        assert cb.failure_threshold == 5
        assert cb.success_threshold == 2
        assert cb.reset_timeout_seconds == 30.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"failure_threshold": 0},
            {"success_threshold": 0},
            {"reset_timeout_seconds": 0},
            {"reset_timeout_seconds": -1.0},
        ],
    )
    def test_rejects_non_positive_settings(self, kwargs):
        """Test construction fails fast on misconfiguration."""
        with pytest.raises(ConfigurationError):
            CircuitBreaker("bad", **kwargs)


class TestStateTransitions:
    """Tests for circuit state transitions."""

    def test_closed_to_open_after_threshold(self, circuit_breaker):
        """Test CLOSED -> OPEN after exactly failure_threshold failures."""
        trip(circuit_breaker, 2)
        assert circuit_breaker.state == CircuitState.CLOSED
        circuit_breaker.record_failure()
        assert circuit_breaker.state == CircuitState.OPEN

    def test_opening_clears_counters(self, circuit_breaker):
        """Test counters are zero when entering OPEN."""
        trip(circuit_breaker)
        assert circuit_breaker.failure_count == 0
        assert circuit_breaker.success_count == 0
        assert circuit_breaker.next_attempt_time is not None

    def test_success_resets_failure_count(self, circuit_breaker):
        """Test a success in CLOSED resets the failure streak."""
        trip(circuit_breaker, 2)
        circuit_breaker.record_success()
        assert circuit_breaker.failure_count == 0
        trip(circuit_breaker, 2)
        assert circuit_breaker.state == CircuitState.CLOSED

    def test_open_to_half_open_after_timeout(self, circuit_breaker):
        """Test OPEN -> HALF_OPEN after the reset timeout."""
        trip(circuit_breaker)
        assert circuit_breaker.state == CircuitState.OPEN
        time.sleep(0.15)
        assert circuit_breaker.state == CircuitState.HALF_OPEN
        assert circuit_breaker.success_count == 0

    def test_half_open_to_closed_after_successes(self, circuit_breaker):
        """Test HALF_OPEN -> CLOSED after success_threshold successes."""
        trip(circuit_breaker)
        time.sleep(0.15)
        assert circuit_breaker.state == CircuitState.HALF_OPEN
        circuit_breaker.record_success()
        assert circuit_breaker.state == CircuitState.HALF_OPEN
        circuit_breaker.record_success()
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.failure_count == 0
        assert circuit_breaker.success_count == 0

    def test_half_open_failure_reopens(self, circuit_breaker):
        """Test any failure in HALF_OPEN re-opens with a new deadline."""
        trip(circuit_breaker)
        first_deadline = circuit_breaker.next_attempt_time
        time.sleep(0.15)
        assert circuit_breaker.state == CircuitState.HALF_OPEN
        circuit_breaker.record_failure()
        assert circuit_breaker.state == CircuitState.OPEN
        assert circuit_breaker.next_attempt_time > first_deadline


class TestExecute:
    """Tests for execute()."""

    @pytest.mark.asyncio
    async def test_passes_result_through(self, circuit_breaker):
        """Test successful operation result is returned."""
        operation = AsyncMock(return_value="paper")
        assert await circuit_breaker.execute(operation) == "paper"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, circuit_breaker):
        """Test the original error propagates after counting."""
        operation = AsyncMock(side_effect=ConnectionError("reset"))
        with pytest.raises(ConnectionError):
            await circuit_breaker.execute(operation)
        assert circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_open_breaker_never_invokes_operation(self, circuit_breaker):
        """Test calls while OPEN are rejected without running."""
        trip(circuit_breaker)
        operation = AsyncMock(return_value="paper")

        with pytest.raises(CircuitOpenError) as exc_info:
            await circuit_breaker.execute(operation)

        operation.assert_not_awaited()
        assert exc_info.value.name == "test-breaker"
        assert exc_info.value.next_attempt_time == circuit_breaker.next_attempt_time
        assert 0 < exc_info.value.retry_after_seconds <= 0.1

    @pytest.mark.asyncio
    async def test_probe_call_runs_in_half_open(self, circuit_breaker):
        """Test the first call after the timeout is observed in HALF_OPEN."""
        trip(circuit_breaker)
        time.sleep(0.15)
        seen = []

        async def probe():
            seen.append(circuit_breaker.state)
            return "ok"

        await circuit_breaker.execute(probe)
        assert seen == [CircuitState.HALF_OPEN]

    @pytest.mark.asyncio
    async def test_full_recovery_cycle(self, circuit_breaker):
        """Test CLOSED -> OPEN -> HALF_OPEN -> CLOSED through execute()."""
        failing = AsyncMock(side_effect=TimeoutError("slow"))
        for _ in range(3):
            with pytest.raises(TimeoutError):
                await circuit_breaker.execute(failing)
        assert circuit_breaker.state == CircuitState.OPEN

        time.sleep(0.15)
        succeeding = AsyncMock(return_value="ok")
        await circuit_breaker.execute(succeeding)
        await circuit_breaker.execute(succeeding)

        assert circuit_breaker.state == CircuitState.CLOSED
        assert succeeding.await_count == 2


class TestAllowRequest:
    """Tests for allow_request method."""

    def test_allows_when_closed(self, circuit_breaker):
        """Test requests allowed when CLOSED."""
        assert circuit_breaker.allow_request() is True

    def test_blocks_when_open(self, circuit_breaker):
        """Test requests blocked when OPEN."""
        trip(circuit_breaker)
        assert circuit_breaker.allow_request() is False


class TestCheckOrRaise:
    """Tests for check_or_raise method."""

    def test_does_not_raise_when_closed(self, circuit_breaker):
        """Test no exception when CLOSED."""
        circuit_breaker.check_or_raise()

    def test_raises_when_open(self, circuit_breaker):
        """Test raises CircuitOpenError when OPEN."""
        trip(circuit_breaker)
        with pytest.raises(CircuitOpenError, match="is OPEN"):
            circuit_breaker.check_or_raise()

    def test_rejection_is_counted(self):
        """Test rejections show up in the metrics registry."""
        cb = CircuitBreaker("metrics-breaker", failure_threshold=1)
        before = get_sample(
            "litflow_circuit_breaker_rejections_total", breaker="metrics-breaker"
        )
        cb.record_failure()
        with pytest.raises(CircuitOpenError):
            cb.check_or_raise()
        after = get_sample(
            "litflow_circuit_breaker_rejections_total", breaker="metrics-breaker"
        )
        assert after == before + 1


class TestReset:
    """Tests for reset method."""

    def test_reset_closes_circuit(self, circuit_breaker):
        """Test reset closes the circuit."""
        trip(circuit_breaker)
        circuit_breaker.reset()
        assert circuit_breaker.state == CircuitState.CLOSED
        assert circuit_breaker.next_attempt_time is None


class TestGetStats:
    """Tests for get_stats method."""

    def test_get_stats_initial(self, circuit_breaker):
        """Test stats for fresh circuit breaker."""
        stats = circuit_breaker.get_stats()
        assert stats["name"] == "test-breaker"
        assert stats["state"] == "closed"
        assert stats["retry_after_seconds"] == 0.0

    def test_get_stats_when_open(self, circuit_breaker):
        """Test stats report totals and remaining wait."""
        trip(circuit_breaker)
        stats = circuit_breaker.get_stats()
        assert stats["state"] == "open"
        assert stats["total_failures"] == 3
        assert 0 < stats["retry_after_seconds"] <= 0.1
