"""
Request and response models for batch memory operations.

Request models only check types; business rules are applied by
MemoryValidator so that errors accumulate per field.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import DEPRECATION_MAX_COUNT
from ..core.schema import MemoryType


class CreateMemoryRequest(BaseModel):
    project_id: str = ""
    content: str = ""
    type: Optional[Union[MemoryType, str]] = None
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateMemoryRequest(BaseModel):
    content: Optional[str] = None
    embedding: Optional[List[float]] = None
    type: Optional[Union[MemoryType, str]] = None
    metadata: Optional[Dict[str, Any]] = None
    is_deprecated: Optional[bool] = None

    def has_updates(self) -> bool:
        return (bool(self.content) or self.embedding is not None or self.type is not None
                or self.metadata is not None or self.is_deprecated is not None)


class BatchCreateRequest(BaseModel):
    memories: List[CreateMemoryRequest] = Field(default_factory=list)
    batch_id: Optional[str] = None
    continue_on_error: bool = False
    report_progress: bool = False

    @field_validator('batch_id')
    @classmethod
    def batch_id_must_not_be_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError('batch_id cannot be blank when provided')
        return v


class BulkDeprecationCriteria(BaseModel):
    project_id: Optional[str] = None
    type: Optional[MemoryType] = None
    created_before: Optional[datetime] = None
    last_accessed_before: Optional[datetime] = None
    metadata_filters: Optional[Dict[str, Any]] = None
    max_count: int = Field(default=DEPRECATION_MAX_COUNT, ge=1)
    include_already_deprecated: bool = False


# Response models

class BatchItemErrorResponse(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    item_index: int
    error_message: str
    validation_errors: Optional[Dict[str, List[str]]] = None
    item_data: Optional[Any] = None


class BatchOperationResponse(BaseModel):
    is_success: bool
    batch_id: str
    state: str
    total_count: int
    success_count: int
    failure_count: int
    created_ids: List[str]
    errors: List[BatchItemErrorResponse]
    completed_at: datetime
    processing_time_ms: float

    @classmethod
    def from_result(cls, result) -> "BatchOperationResponse":
        return cls(
            is_success=result.is_success,
            batch_id=result.batch_id,
            state=result.state.value,
            total_count=result.total_count,
            success_count=result.success_count,
            failure_count=result.failure_count,
            created_ids=list(result.created_ids),
            errors=[BatchItemErrorResponse(**error.to_dict()) for error in result.errors],
            completed_at=result.completed_at,
            processing_time_ms=result.processing_time.total_seconds() * 1000,
        )


class BatchValidationResponse(BaseModel):
    is_valid: bool
    total_count: int
    valid_count: int
    invalid_count: int
    validation_errors: List[BatchItemErrorResponse]
    warnings: List[str]

    @classmethod
    def from_result(cls, result) -> "BatchValidationResponse":
        return cls(
            is_valid=result.is_valid,
            total_count=result.total_count,
            valid_count=result.valid_count,
            invalid_count=result.invalid_count,
            validation_errors=[BatchItemErrorResponse(**error.to_dict()) for error in result.validation_errors],
            warnings=list(result.warnings),
        )


class BatchProgressResponse(BaseModel):
    batch_id: str
    processed_count: int
    total_count: int
    progress_percentage: int
    status: str
    estimated_time_remaining_seconds: Optional[float] = None

    @classmethod
    def from_info(cls, info) -> "BatchProgressResponse":
        return cls(**info.to_dict())


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    status_code: int = 500
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    details: Optional[Dict[str, Any]] = None
    validation_errors: Optional[Dict[str, List[str]]] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorResponse":
        """Classify a propagated error into a structured payload."""
        from ..core.batch import BatchCancelledError, BatchSizeError, BatchTransactionError
        from ..core.progress import DuplicateBatchError
        from ..core.validation import MemoryValidationError

        if isinstance(exc, MemoryValidationError):
            return cls(error_type="VALIDATION_ERROR", message="Validation failed", status_code=400,
                       validation_errors=exc.validation_errors)
        if isinstance(exc, BatchCancelledError):
            return cls(error_type="CANCELLED", message=str(exc), status_code=499,
                       details=_batch_details(exc.result))
        if isinstance(exc, BatchTransactionError):
            return cls(error_type="TRANSACTION_ERROR", message=str(exc), status_code=500,
                       details=_batch_details(exc.result))
        if isinstance(exc, (BatchSizeError, DuplicateBatchError)):
            return cls(error_type="INVALID_ARGUMENT", message=str(exc), status_code=400)
        if isinstance(exc, KeyError):
            return cls(error_type="NOT_FOUND", message=str(exc), status_code=404)
        if isinstance(exc, TimeoutError):
            return cls(error_type="TIMEOUT", message=str(exc), status_code=408)
        if isinstance(exc, ValueError):
            return cls(error_type="INVALID_ARGUMENT", message=str(exc), status_code=400)
        return cls(error_type="INTERNAL_ERROR", message="An unexpected error occurred", status_code=500)


def _batch_details(result) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "batch_id": result.batch_id,
        "total_count": result.total_count,
        "errors": [error.to_dict(include_item_data=False) for error in result.errors],
    }
