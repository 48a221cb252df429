"""Unit tests for BatchSaveService"""

import pytest
from unittest.mock import AsyncMock, patch

from litflow.models.config import BatchSaveConfig, RetryConfig
from litflow.models.paper import PaperRecord, SaveResult
from litflow.observability.performance import PerformanceMetricsRecorder
from litflow.services.batch_save_service import BatchSaveService
from litflow.utils.cancellation import CancellationToken
from litflow.utils.exceptions import OperationCancelledError


def make_paper(index: int, **overrides) -> PaperRecord:
    data = {"id": f"search-{index}", "title": f"Paper {index}"}
    data.update(overrides)
    return PaperRecord(**data)


@pytest.fixture
def fast_config():
    """Config without pacing delay and with tiny retry delays."""
    return BatchSaveConfig(
        max_concurrency=1,
        inter_batch_delay_seconds=0.0,
        retry=RetryConfig(max_attempts=2, base_delay_seconds=0.01, max_delay_seconds=0.02),
    )


@pytest.fixture
def save_mock():
    """Persistence collaborator that acknowledges every save."""

    async def save(paper: PaperRecord) -> SaveResult:
        return SaveResult(success=True, id=f"lib-{paper.id}")

    return AsyncMock(side_effect=save)


@pytest.fixture
def service(save_mock, fast_config):
    """Create batch save service."""
    return BatchSaveService(save_mock, config=fast_config)


class TestBatchSaveBasics:
    """Tests for the happy path and empty input."""

    @pytest.mark.asyncio
    async def test_empty_input(self, service, save_mock):
        """Test empty input returns zero counts and makes no calls."""
        progress = []

        result = await service.batch_save([], on_progress=progress.append)

        assert result.saved_count == 0
        assert result.skipped_count == 0
        assert result.failed_count == 0
        assert result.failed_items == []
        assert result.id_mapping == {}
        save_mock.assert_not_called()
        assert progress == []

    @pytest.mark.asyncio
    async def test_saves_all_and_maps_ids(self, service, save_mock):
        """Test every record is saved in order and mapped."""
        papers = [make_paper(i) for i in range(3)]

        result = await service.batch_save(papers)

        assert result.saved_count == 3
        assert result.id_mapping == {
            "search-0": "lib-search-0",
            "search-1": "lib-search-1",
            "search-2": "lib-search-2",
        }
        assert [c.args[0].id for c in save_mock.call_args_list] == [
            "search-0",
            "search-1",
            "search-2",
        ]

    @pytest.mark.asyncio
    async def test_processed_count_matches_input(self, service):
        """Test saved + skipped + failed equals the input size."""
        papers = [
            make_paper(0),
            make_paper(1, persisted_id="lib-existing"),
            make_paper(2, title=""),
        ]

        result = await service.batch_save(papers)

        assert result.processed_count == 3
        assert (result.saved_count, result.skipped_count, result.failed_count) == (1, 1, 1)


class TestValidationAndSkips:
    """Tests for invalid and already-saved records."""

    @pytest.mark.asyncio
    async def test_missing_fields_fail_without_call(self, service, save_mock):
        """Test records without id or title fail locally."""
        result = await service.batch_save([PaperRecord(id="", title="")])

        save_mock.assert_not_called()
        assert result.failed_count == 1
        assert result.failed_items[0].error == "Missing required fields: id, title"

    @pytest.mark.asyncio
    async def test_whitespace_title_is_missing(self, service):
        """Test blank titles count as missing."""
        result = await service.batch_save([make_paper(0, title="   ")])
        assert result.failed_items[0].error == "Missing required fields: title"

    @pytest.mark.asyncio
    async def test_persisted_records_are_skipped(self, service, save_mock):
        """Test records with a persisted ID are mapped without saving."""
        result = await service.batch_save([make_paper(0, persisted_id="lib-7")])

        save_mock.assert_not_called()
        assert result.skipped_count == 1
        assert result.id_mapping == {"search-0": "lib-7"}


class TestFailures:
    """Tests for per-item failures."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_others(self, fast_config):
        """Test a failing save is recorded and the rest continue."""

        async def save(paper):
            if paper.id == "search-1":
                raise ValueError("invalid payload")
            return SaveResult(success=True, id=f"lib-{paper.id}")

        service = BatchSaveService(AsyncMock(side_effect=save), config=fast_config)

        result = await service.batch_save([make_paper(i) for i in range(3)])

        assert result.saved_count == 2
        assert result.failed_count == 1
        assert result.failed_items[0].id == "search-1"
        assert result.failed_items[0].title == "Paper 1"
        assert "invalid payload" in result.failed_items[0].error
        assert "search-1" not in result.id_mapping

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, fast_config):
        """Test a network error is retried and then succeeds."""
        save = AsyncMock(
            side_effect=[ConnectionError("reset"), SaveResult(success=True, id="lib-0")]
        )
        service = BatchSaveService(save, config=fast_config)

        result = await service.batch_save([make_paper(0)])

        assert save.call_count == 2
        assert result.id_mapping == {"search-0": "lib-0"}

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_not_retried(self, fast_config):
        """Test a 404 fails after a single call."""
        save = AsyncMock(side_effect=Exception("404 not found"))
        service = BatchSaveService(save, config=fast_config)

        result = await service.batch_save([make_paper(0)])

        assert save.call_count == 1
        assert result.failed_count == 1

    @pytest.mark.asyncio
    async def test_unacknowledged_save_fails(self, fast_config):
        """Test success=False is a failure and not retried."""
        save = AsyncMock(return_value=SaveResult(success=False))
        service = BatchSaveService(save, config=fast_config)

        result = await service.batch_save([make_paper(0)])

        assert save.call_count == 1
        assert result.failed_count == 1
        assert "not acknowledged" in result.failed_items[0].error


class TestBatchingAndPacing:
    """Tests for batch size, order and inter-batch delay."""

    @pytest.mark.asyncio
    async def test_sleeps_between_batches_only(self, save_mock):
        """Test N batches produce N-1 sleeps of the configured delay."""
        config = BatchSaveConfig(max_concurrency=2, inter_batch_delay_seconds=0.7)
        service = BatchSaveService(save_mock, config=config)

        with patch(
            "litflow.services.batch_save_service.asyncio.sleep", new=AsyncMock()
        ) as sleep:
            await service.batch_save([make_paper(i) for i in range(5)])

        assert sleep.await_count == 2
        assert all(c.args[0] == 0.7 for c in sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_progress_before_and_after_each_batch(self, service):
        """Test progress messages bracket every batch."""
        progress = []

        await service.batch_save(
            [make_paper(0), make_paper(1)], on_progress=progress.append
        )

        assert [p.message for p in progress] == [
            "Saving batch 1/2...",
            "Saved 1/2 papers",
            "Saving batch 2/2...",
            "Saved 2/2 papers",
        ]
        assert progress[-1].saved_count == 2
        assert progress[-1].total_batches == 2

    @pytest.mark.asyncio
    async def test_single_report_when_nothing_to_save(self, service):
        """Test all-skipped input still reports final progress once."""
        progress = []

        await service.batch_save(
            [make_paper(0, persisted_id="lib-0")], on_progress=progress.append
        )

        assert len(progress) == 1
        assert progress[0].message == "Saved 1/1 papers"
        assert progress[0].total_batches == 0


class TestCancellation:
    """Tests for cancellation between batches."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, service, save_mock):
        """Test a cancelled token stops before the first batch."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError, match="cancelled by user") as exc_info:
            await service.batch_save([make_paper(0)], cancel_token=token)

        save_mock.assert_not_called()
        assert exc_info.value.context["processed_count"] == 0

    @pytest.mark.asyncio
    async def test_cancel_after_first_batch(self, fast_config):
        """Test in-progress batch finishes and counts are reported."""
        token = CancellationToken()

        async def save(paper):
            token.cancel()
            return SaveResult(success=True, id=f"lib-{paper.id}")

        save_mock = AsyncMock(side_effect=save)
        service = BatchSaveService(save_mock, config=fast_config)

        with pytest.raises(OperationCancelledError) as exc_info:
            await service.batch_save(
                [make_paper(i) for i in range(3)], cancel_token=token
            )

        assert save_mock.call_count == 1
        assert exc_info.value.context["saved_count"] == 1
        assert exc_info.value.context["processed_count"] == 1


class TestRecorder:
    """Tests for performance recording."""

    @pytest.mark.asyncio
    async def test_records_each_save(self, save_mock, fast_config):
        """Test every save attempt is recorded as an operation."""
        recorder = PerformanceMetricsRecorder(run_id="test")
        service = BatchSaveService(save_mock, config=fast_config, recorder=recorder)

        await service.batch_save([make_paper(0), make_paper(1)])

        stats = recorder.get_operation_stats("save")
        assert stats.count == 2
        assert stats.success_count == 2
