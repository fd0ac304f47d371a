"""
Request/response model tests - request parsing, result conversion and
error classification.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from src.api.schemas import (
    BatchCreateRequest,
    BatchOperationResponse,
    BatchProgressResponse,
    BatchValidationResponse,
    BulkDeprecationCriteria,
    ErrorResponse,
    UpdateMemoryRequest,
)
from src.core.batch import (
    BatchCancelledError,
    BatchItemError,
    BatchOperationResult,
    BatchSizeError,
    BatchState,
    BatchTransactionError,
    BatchValidationResult,
)
from src.core.progress import BatchProgressInfo, DuplicateBatchError
from src.core.schema import MemoryType
from src.core.validation import MemoryValidationError


def sample_result():
    return BatchOperationResult(
        batch_id="b-1",
        total_count=2,
        success_count=1,
        failure_count=1,
        created_ids=["id-1"],
        errors=[BatchItemError(item_index=1, error_message="Validation failed",
                               validation_errors={"content": ["content is required"]},
                               item_data={"content": "secret"})],
        is_success=True,
        state=BatchState.COMPLETED,
        completed_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        processing_time=timedelta(milliseconds=250),
    )


class TestRequests:
    """Test request parsing."""

    def test_batch_defaults(self):
        request = BatchCreateRequest(memories=[{"project_id": "p", "content": "c", "type": "code_pattern"}])
        assert request.continue_on_error is False
        assert request.report_progress is False
        assert request.batch_id is None

    def test_blank_batch_id_rejected(self):
        with pytest.raises(ValidationError):
            BatchCreateRequest(memories=[], batch_id="  ")

    def test_update_has_updates(self):
        assert not UpdateMemoryRequest().has_updates()
        assert not UpdateMemoryRequest(content="").has_updates()
        assert UpdateMemoryRequest(is_deprecated=False).has_updates()

    def test_criteria_type_parsed(self):
        criteria = BulkDeprecationCriteria(type="bug_pattern")
        assert criteria.type is MemoryType.BUG_PATTERN
        assert criteria.max_count == 1000


class TestResponses:
    """Test conversion from service results."""

    def test_operation_response(self):
        response = BatchOperationResponse.from_result(sample_result())
        assert response.state == "completed"
        assert response.processing_time_ms == pytest.approx(250.0)
        assert response.errors[0].validation_errors == {"content": ["content is required"]}

    def test_validation_response(self):
        result = BatchValidationResult(is_valid=True, total_count=1, valid_count=1, warnings=["w"])
        response = BatchValidationResponse.from_result(result)
        assert response.warnings == ["w"]
        assert response.validation_errors == []

    def test_progress_response(self):
        info = BatchProgressInfo(batch_id="b", processed_count=1, total_count=4, progress_percentage=25,
                                 status="Running")
        response = BatchProgressResponse.from_info(info)
        assert response.progress_percentage == 25
        assert response.estimated_time_remaining_seconds is None

    def test_result_to_dict(self):
        data = sample_result().to_dict()
        assert data["state"] == "completed"
        assert data["errors"][0]["item_index"] == 1
        assert data["completed_at"].startswith("2025-01-01")


class TestErrorResponse:
    """Test exception classification."""

    def test_validation_error(self):
        response = ErrorResponse.from_exception(MemoryValidationError({"content": ["content is required"]}))
        assert response.status_code == 400
        assert response.error_type == "VALIDATION_ERROR"
        assert response.validation_errors == {"content": ["content is required"]}

    def test_cancelled(self):
        response = ErrorResponse.from_exception(BatchCancelledError("cancelled", sample_result()))
        assert response.status_code == 499
        assert response.details["batch_id"] == "b-1"

    def test_transaction_error_hides_item_data(self):
        response = ErrorResponse.from_exception(BatchTransactionError("failed", sample_result()))
        assert response.status_code == 500
        assert "item_data" not in response.details["errors"][0]

    @pytest.mark.parametrize("exc,status", [
        (BatchSizeError("too many"), 400),
        (DuplicateBatchError("busy"), 400),
        (ValueError("bad"), 400),
        (KeyError("missing"), 404),
        (TimeoutError("slow"), 408),
    ])
    def test_status_mapping(self, exc, status):
        assert ErrorResponse.from_exception(exc).status_code == status

    def test_unexpected_error_is_generic(self):
        response = ErrorResponse.from_exception(RuntimeError("stack details"))
        assert response.status_code == 500
        assert response.message == "An unexpected error occurred"
        assert response.timestamp is not None

    def test_timestamp_defaults_to_utc_now(self):
        first = ErrorResponse(error_type="ValueError", message="bad", status_code=400)
        second = ErrorResponse(error_type="ValueError", message="bad", status_code=400)

        assert first.timestamp.tzinfo is not None
        assert first.timestamp <= second.timestamp
        assert ErrorResponse.model_fields["timestamp"].default_factory is not None
