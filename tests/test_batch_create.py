"""
Batch create tests - size bounds, abort vs. continue policy, rollback,
cancellation and progress reporting.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.api.schemas import BatchCreateRequest
from src.core.batch import (
    BatchCancelledError,
    BatchMemoryService,
    BatchState,
    BatchTransactionError,
    CancellationToken,
)
from src.core.progress import DuplicateBatchError
from src.core.store import StoreError
from conftest import make_item


def three_items_one_empty():
    return [make_item(0), make_item(1, content=""), make_item(2)]


class TestBatchSizeBounds:
    """Test rejection of empty and oversized batches."""

    @pytest.mark.parametrize("count", [0, 101])
    def test_out_of_bounds_rejected_without_transaction(self, service, store, count):
        request = BatchCreateRequest(memories=[make_item(i) for i in range(count)])

        with patch.object(store, "begin", wraps=store.begin) as begin:
            result = service.create_batch(request)

        begin.assert_not_called()
        assert result.is_success is False
        assert result.state is BatchState.REJECTED
        assert result.failure_count == count
        assert result.success_count == 0
        assert result.errors[0].item_index == -1
        assert store.count() == 0

    def test_custom_max_batch_size(self, store, validator, tracker):
        service = BatchMemoryService(store, validator=validator, tracker=tracker, max_batch_size=2)
        result = service.create_batch(BatchCreateRequest(memories=[make_item(i) for i in range(3)]))
        assert result.errors[0].error_message == "Maximum 2 memories allowed per batch operation"


class TestCreateBatch:
    """Test the create workflow."""

    def test_all_valid(self, service, store):
        request = BatchCreateRequest(memories=[make_item(i) for i in range(5)], batch_id="batch-ok")
        result = service.create_batch(request)

        assert result.is_success
        assert result.state is BatchState.COMPLETED
        assert result.batch_id == "batch-ok"
        assert result.success_count == 5
        assert result.failure_count == 0
        assert len(result.created_ids) == 5
        assert store.count() == 5
        assert result.completed_at is not None
        assert result.processing_time.total_seconds() >= 0

    def test_created_ids_follow_input_order(self, service, store):
        items = [make_item(i) for i in range(3)]
        result = service.create_batch(BatchCreateRequest(memories=items))
        contents = [store.get(memory_id).content for memory_id in result.created_ids]
        assert contents == [item.content for item in items]

    def test_generated_batch_id(self, service):
        result = service.create_batch(BatchCreateRequest(memories=[make_item()]))
        assert result.batch_id

    def test_abort_on_invalid_item(self, service, store):
        request = BatchCreateRequest(memories=three_items_one_empty(), continue_on_error=False)

        with patch.object(store, "begin", wraps=store.begin) as begin:
            result = service.create_batch(request)

        begin.assert_not_called()
        assert result.is_success is False
        assert result.success_count == 0
        assert result.failure_count == 3
        assert result.created_ids == []
        assert [e.item_index for e in result.errors] == [1]
        assert store.count() == 0

    def test_continue_on_invalid_item(self, service, store):
        request = BatchCreateRequest(memories=three_items_one_empty(), continue_on_error=True)
        result = service.create_batch(request)

        assert result.is_success is True
        assert result.state is BatchState.COMPLETED
        assert result.success_count == 2
        assert result.failure_count == 1
        assert len(result.created_ids) == 2
        assert len(result.errors) == 1

        error = result.errors[0]
        assert error.item_index == 1
        assert error.error_message == "Validation failed"
        assert "content" in error.validation_errors
        assert error.item_data["content"] == ""
        assert store.count() == 2

    def test_unrepresentable_embedding_skipped(self, service, store):
        items = [make_item(0), make_item(1, embedding=[1e39, 0.5]), make_item(2, embedding=[0.5, 0.5])]
        result = service.create_batch(BatchCreateRequest(memories=items, continue_on_error=True))

        assert result.success_count == 2
        assert [e.item_index for e in result.errors] == [1]
        assert "embedding" in result.errors[0].validation_errors
        assert store.count() == 2
        stored = [store.get(memory_id).embedding for memory_id in result.created_ids]
        assert stored[1] == pytest.approx([0.5, 0.5])

    def test_counts_always_add_up(self, service):
        items = [make_item(0), make_item(1, type="bogus"), make_item(2, project_id="bad id"), make_item(3)]
        for continue_on_error in (True, False):
            result = service.create_batch(BatchCreateRequest(memories=items, continue_on_error=continue_on_error))
            assert result.success_count + result.failure_count == result.total_count
            assert len(result.created_ids) == result.success_count

    def test_commit_failure_rolls_back(self, service, store):
        with patch("src.core.store.StoreTransaction.commit", side_effect=StoreError("disk full")):
            with pytest.raises(BatchTransactionError) as exc_info:
                service.create_batch(BatchCreateRequest(memories=[make_item(i) for i in range(3)]))

        result = exc_info.value.result
        assert result.state is BatchState.ROLLED_BACK
        assert result.success_count == 0
        assert result.failure_count == 3
        assert result.created_ids == []
        assert "disk full" in result.errors[0].error_message
        assert isinstance(exc_info.value.__cause__, StoreError)
        assert store.count() == 0

    def test_begin_failure_raises_transaction_error(self, service, store):
        with patch.object(store, "begin", side_effect=StoreError("locked")):
            with pytest.raises(BatchTransactionError):
                service.create_batch(BatchCreateRequest(memories=[make_item()]))


class TestCancellation:
    """Test cooperative cancellation."""

    def test_cancelled_before_start(self, service, store):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(BatchCancelledError) as exc_info:
            service.create_batch(BatchCreateRequest(memories=[make_item(i) for i in range(3)]), cancellation=token)

        assert exc_info.value.result.state is BatchState.CANCELLED
        assert exc_info.value.result.success_count == 0
        assert store.count() == 0

    def test_cancelled_mid_batch(self, service, store, tracker):
        token = CancellationToken()

        def cancel_after_second(info):
            if info.processed_count == 2:
                token.cancel()

        request = BatchCreateRequest(memories=[make_item(i) for i in range(5)], batch_id="cancel-me",
                                     report_progress=True)
        with pytest.raises(BatchCancelledError):
            service.create_batch(request, progress_callback=cancel_after_second, cancellation=token)

        assert store.count() == 0
        assert tracker.get("cancel-me") is None


class TestProgressReporting:
    """Test progress callbacks and tracker lifecycle."""

    def test_callback_receives_each_item(self, service):
        callback = MagicMock()
        request = BatchCreateRequest(memories=[make_item(i) for i in range(3)], report_progress=True)
        service.create_batch(request, progress_callback=callback)

        reports = [c.args[0] for c in callback.call_args_list]
        assert [r.processed_count for r in reports] == [1, 2, 3]
        assert [r.progress_percentage for r in reports] == [33, 66, 100]
        assert all(r.total_count == 3 for r in reports)

    def test_no_callback_without_report_progress(self, service):
        callback = MagicMock()
        service.create_batch(BatchCreateRequest(memories=[make_item()]), progress_callback=callback)
        callback.assert_not_called()

    def test_status_visible_during_batch_and_gone_after(self, service, tracker):
        seen = []

        def capture(info):
            seen.append(service.get_batch_status("live-batch"))

        request = BatchCreateRequest(memories=[make_item(i) for i in range(2)], batch_id="live-batch",
                                     report_progress=True)
        service.create_batch(request, progress_callback=capture)

        assert [s.processed_count for s in seen] == [1, 2]
        assert service.get_batch_status("live-batch") is None

    def test_entry_removed_after_failure(self, service, tracker):
        request = BatchCreateRequest(memories=[make_item()], batch_id="doomed", report_progress=True)
        with patch("src.core.store.StoreTransaction.commit", side_effect=StoreError("boom")):
            with pytest.raises(BatchTransactionError):
                service.create_batch(request)
        assert "doomed" not in tracker

    def test_failing_callback_does_not_break_batch(self, service, store):
        callback = MagicMock(side_effect=RuntimeError("listener crashed"))
        request = BatchCreateRequest(memories=[make_item(i) for i in range(2)], report_progress=True)

        with patch("src.core.batch.logger") as mock_logger:
            result = service.create_batch(request, progress_callback=callback)

        assert result.is_success
        assert store.count() == 2
        assert mock_logger.warning.call_count == 2

    def test_duplicate_in_flight_batch_id(self, service, tracker, store):
        tracker.start("busy", 10)
        request = BatchCreateRequest(memories=[make_item()], batch_id="busy", report_progress=True)

        with pytest.raises(DuplicateBatchError):
            service.create_batch(request)

        # The other batch's entry must survive
        assert "busy" in tracker
        assert store.count() == 0

    def test_unknown_status_is_none(self, service):
        assert service.get_batch_status("never-ran") is None
