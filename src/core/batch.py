"""
Batch memory operations - validated, transactional create/update/deprecate.

Each call walks a small state machine:
    validating -> executing -> committing -> completed | rolled_back
Items are processed in input order inside one store transaction. Whether a
per-item failure aborts the batch or is recorded and skipped is decided per
item from the continue_on_error policy; validation failures never reach the
store, and store failures always roll the whole batch back.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from util.logging import logger

from ..api.schemas import BatchCreateRequest, BulkDeprecationCriteria, CreateMemoryRequest, UpdateMemoryRequest
from .config import (
    CONTENT_WARNING_LENGTH,
    DEPRECATION_PROGRESS_INTERVAL,
    EXPECTED_EMBEDDING_DIMENSION,
    MAX_BATCH_SIZE,
)
from .progress import BatchProgressInfo, ProgressTracker, compute_percentage, progress_tracker
from .schema import MemoryRecord, utcnow
from .store import MemoryStore, StoreTransaction
from .validation import MemoryValidator

ProgressCallback = Callable[[BatchProgressInfo], None]


class BatchState(str, Enum):
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMMITTING = "committing"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class BatchError(Exception):
    """Base class for errors propagated out of batch operations."""

    def __init__(self, message: str, result: Optional["BatchOperationResult"] = None):
        super().__init__(message)
        self.result = result


class BatchSizeError(BatchError, ValueError):
    """Raised when a batch exceeds the configured item limit."""
    pass


class BatchCancelledError(BatchError):
    """Raised after a cancelled batch has been rolled back."""
    pass


class BatchTransactionError(BatchError):
    """Raised after a store failure forced a full rollback."""
    pass


class CancellationToken:
    """Cooperative cancellation signal checked before each batch item."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BatchItemError:
    item_index: int
    error_message: str
    validation_errors: Optional[Dict[str, List[str]]] = None
    item_data: Any = None

    def to_dict(self, include_item_data: bool = True) -> Dict[str, Any]:
        data = {
            "item_index": self.item_index,
            "error_message": self.error_message,
            "validation_errors": self.validation_errors,
        }
        if include_item_data:
            data["item_data"] = self.item_data
        return data


@dataclass
class BatchOperationResult:
    batch_id: str
    total_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    created_ids: List[str] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)
    is_success: bool = False
    state: BatchState = BatchState.VALIDATING
    completed_at: Optional[datetime] = None
    processing_time: timedelta = timedelta(0)

    def mark_failed_completely(self, state: BatchState = BatchState.ROLLED_BACK) -> None:
        """Nothing was persisted: every item counts as failed."""
        self.success_count = 0
        self.failure_count = self.total_count
        self.created_ids = []
        self.is_success = False
        self.state = state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "is_success": self.is_success,
            "state": self.state.value,
            "total_count": self.total_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "created_ids": list(self.created_ids),
            "errors": [error.to_dict() for error in self.errors],
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processing_time_ms": self.processing_time.total_seconds() * 1000,
        }


@dataclass
class BatchValidationResult:
    is_valid: bool = False
    total_count: int = 0
    valid_count: int = 0
    invalid_count: int = 0
    validation_errors: List[BatchItemError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class _Outcome(str, Enum):
    FINISHED = "finished"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class BatchMemoryService:
    """Runs multi-item memory operations against a MemoryStore."""

    def __init__(self, store: MemoryStore, validator: Optional[MemoryValidator] = None,
                 tracker: Optional[ProgressTracker] = None, max_batch_size: int = MAX_BATCH_SIZE):
        self.store = store
        self.validator = validator or MemoryValidator()
        self.tracker = tracker if tracker is not None else progress_tracker
        self.max_batch_size = max_batch_size

    # ------------------------------------------------------------------ create

    def create_batch(self, request: BatchCreateRequest, progress_callback: Optional[ProgressCallback] = None,
                     cancellation: Optional[CancellationToken] = None) -> BatchOperationResult:
        """Validate and insert up to max_batch_size memories in one transaction."""
        started = time.monotonic()
        items = request.memories
        batch_id = request.batch_id or str(uuid.uuid4())
        result = BatchOperationResult(batch_id=batch_id, total_count=len(items))
        tracked = False

        logger.log_batch_started("create", batch_id, len(items))

        try:
            size_error = self._check_batch_size(len(items))
            if size_error:
                result.errors.append(BatchItemError(item_index=-1, error_message=size_error))
                result.mark_failed_completely(BatchState.REJECTED)
                return result

            invalid_items = self._validate_items(items)
            if invalid_items and not request.continue_on_error:
                result.errors = list(invalid_items.values())
                result.mark_failed_completely(BatchState.REJECTED)
                logger.log_validation_error("batch.create", [e.validation_errors for e in result.errors],
                                            {"item_index": sorted(invalid_items)})
                return result

            if request.report_progress:
                self.tracker.start(batch_id, len(items), "Starting batch creation")
                tracked = True

            tx = self._begin(result, "create")
            try:
                result.state = BatchState.EXECUTING
                staged: List[MemoryRecord] = []
                outcome = _Outcome.FINISHED

                for index, item in enumerate(items):
                    if cancellation is not None and cancellation.is_cancelled:
                        outcome = _Outcome.CANCELLED
                        break

                    error = invalid_items.get(index)
                    record = None
                    if error is None:
                        record, error = self._build_record(index, item)

                    if error is not None:
                        result.errors.append(error)
                        result.failure_count += 1
                        logger.log_batch_item_failed("create", batch_id, index, error.error_message)
                        if not request.continue_on_error:
                            outcome = _Outcome.ABORTED
                            break
                    else:
                        tx.add(record)
                        staged.append(record)
                        result.success_count += 1

                    if request.report_progress:
                        self._report_progress(batch_id, index + 1, len(items),
                                              f"Created memory {index + 1} of {len(items)}",
                                              progress_callback, tracked)

                if outcome is not _Outcome.FINISHED:
                    self._abandon(tx, result, outcome, "create")
                else:
                    result.state = BatchState.COMMITTING
                    tx.commit()
                    result.created_ids = [record.id for record in staged]
                    result.is_success = result.failure_count == 0 or request.continue_on_error
                    result.state = BatchState.COMPLETED
            except BatchError:
                raise
            except Exception as e:
                self._fail_transaction(tx, result, e, "create")

            return result
        finally:
            self._finish(result, started, "create", tracked)

    # ------------------------------------------------------------------ update

    def update_batch(self, updates: Dict[str, UpdateMemoryRequest],
                     progress_callback: Optional[ProgressCallback] = None,
                     cancellation: Optional[CancellationToken] = None,
                     continue_on_error: bool = True, batch_id: Optional[str] = None,
                     report_progress: bool = False) -> BatchOperationResult:
        """Apply partial updates keyed by memory id in one transaction.

        Unknown ids and invalid updates are per-item failures. With
        continue_on_error (the default) they are recorded and the loop goes on;
        otherwise the first one rolls the batch back.
        """
        if len(updates) > self.max_batch_size:
            raise BatchSizeError(f"Maximum {self.max_batch_size} updates allowed per batch")

        started = time.monotonic()
        batch_id = batch_id or str(uuid.uuid4())
        result = BatchOperationResult(batch_id=batch_id, total_count=len(updates))
        tracked = False

        logger.log_batch_started("update", batch_id, len(updates))

        try:
            if report_progress:
                self.tracker.start(batch_id, len(updates), "Starting batch update")
                tracked = True

            tx = self._begin(result, "update")
            try:
                result.state = BatchState.EXECUTING
                existing = tx.fetch_by_ids(updates.keys())
                outcome = _Outcome.FINISHED
                now = utcnow()

                for index, (memory_id, update) in enumerate(updates.items()):
                    if cancellation is not None and cancellation.is_cancelled:
                        outcome = _Outcome.CANCELLED
                        break

                    record = existing.get(memory_id)
                    if record is None:
                        error = BatchItemError(item_index=index, error_message=f"Memory with ID {memory_id} not found")
                    else:
                        error = self._apply_update(index, record, update, now)

                    if error is not None:
                        result.errors.append(error)
                        result.failure_count += 1
                        logger.log_batch_item_failed("update", batch_id, index, error.error_message)
                        if not continue_on_error:
                            outcome = _Outcome.ABORTED
                            break
                    else:
                        tx.save(record)
                        result.success_count += 1

                    self._report_progress(batch_id, index + 1, len(updates),
                                          f"Updated memory {index + 1} of {len(updates)}",
                                          progress_callback, tracked)

                if outcome is not _Outcome.FINISHED:
                    self._abandon(tx, result, outcome, "update")
                else:
                    result.state = BatchState.COMMITTING
                    tx.commit()
                    result.is_success = result.failure_count == 0
                    result.state = BatchState.COMPLETED
            except BatchError:
                raise
            except Exception as e:
                self._fail_transaction(tx, result, e, "update")

            return result
        finally:
            self._finish(result, started, "update", tracked)

    # --------------------------------------------------------------- deprecate

    def bulk_deprecate(self, criteria: BulkDeprecationCriteria,
                       progress_callback: Optional[ProgressCallback] = None,
                       cancellation: Optional[CancellationToken] = None,
                       batch_id: Optional[str] = None, report_progress: bool = False) -> BatchOperationResult:
        """Mark up to criteria.max_count matching memories deprecated in one transaction."""
        started = time.monotonic()
        batch_id = batch_id or str(uuid.uuid4())
        result = BatchOperationResult(batch_id=batch_id)
        tracked = False

        logger.log_operation("batch.deprecate", "started", {
            "batch_id": batch_id,
            "project_id": criteria.project_id,
            "type": criteria.type.value if criteria.type else None,
            "max_count": criteria.max_count
        })

        try:
            if report_progress:
                # Reserve the id before the transaction; the total is known after selection
                self.tracker.start(batch_id, 0, "Selecting memories for deprecation")
                tracked = True

            tx = self._begin(result, "deprecate")
            try:
                result.state = BatchState.EXECUTING
                matches = tx.find(criteria)
                result.total_count = len(matches)
                if tracked:
                    self.tracker.update(batch_id, 0, "Starting bulk deprecation", total_count=len(matches))

                if not matches:
                    result.state = BatchState.COMMITTING
                    tx.commit()
                    result.is_success = True
                    result.state = BatchState.COMPLETED
                    logger.info(f"No memories matched deprecation criteria for batch {batch_id}")
                    return result

                outcome = _Outcome.FINISHED
                for index, record in enumerate(matches):
                    if cancellation is not None and cancellation.is_cancelled:
                        outcome = _Outcome.CANCELLED
                        break

                    record.is_deprecated = True
                    tx.save(record)
                    result.success_count += 1

                    processed = index + 1
                    if processed % DEPRECATION_PROGRESS_INTERVAL == 0 or processed == len(matches):
                        self._report_progress(batch_id, processed, len(matches),
                                              f"Deprecated {processed} of {len(matches)} memories",
                                              progress_callback, tracked)

                if outcome is not _Outcome.FINISHED:
                    self._abandon(tx, result, outcome, "deprecate")
                else:
                    result.state = BatchState.COMMITTING
                    tx.commit()
                    result.is_success = True
                    result.state = BatchState.COMPLETED
            except BatchError:
                raise
            except Exception as e:
                self._fail_transaction(tx, result, e, "deprecate")

            return result
        finally:
            self._finish(result, started, "deprecate", tracked)

    # ---------------------------------------------------------------- dry run

    def validate_batch(self, request: BatchCreateRequest) -> BatchValidationResult:
        """Validate a create batch without touching the store.

        Warnings (unusual embedding dimension, content near the size limit,
        duplicate project/content pairs) never affect is_valid.
        """
        items = request.memories
        result = BatchValidationResult(total_count=len(items))

        size_error = self._check_batch_size(len(items))
        if size_error:
            result.validation_errors.append(BatchItemError(item_index=-1, error_message=size_error))
            return result

        invalid_items = self._validate_items(items)
        result.validation_errors = list(invalid_items.values())
        result.invalid_count = len(invalid_items)
        result.valid_count = len(items) - result.invalid_count

        for index, item in enumerate(items):
            if item.embedding and len(item.embedding) != EXPECTED_EMBEDDING_DIMENSION:
                result.warnings.append(
                    f"Memory at index {index}: Embedding dimension {len(item.embedding)} may not be compatible "
                    f"with standard models (expected {EXPECTED_EMBEDDING_DIMENSION})"
                )
            if item.content and len(item.content) > CONTENT_WARNING_LENGTH:
                result.warnings.append(
                    f"Memory at index {index}: Content length {len(item.content)} is approaching the limit"
                )

        groups: "OrderedDict[Tuple[str, str], List[int]]" = OrderedDict()
        for index, item in enumerate(items):
            groups.setdefault((item.project_id, item.content), []).append(index)
        for indices in groups.values():
            if len(indices) > 1:
                result.warnings.append(f"Duplicate content found at indices: {', '.join(str(i) for i in indices)}")

        result.is_valid = result.invalid_count == 0
        return result

    def get_batch_status(self, batch_id: str) -> Optional[BatchProgressInfo]:
        """Live progress for an in-flight batch; None once it has finished or if unknown."""
        if not batch_id:
            raise ValueError("batch_id is required")
        return self.tracker.get(batch_id)

    # ---------------------------------------------------------------- helpers

    def _check_batch_size(self, count: int) -> Optional[str]:
        if count == 0:
            return "At least one memory is required"
        if count > self.max_batch_size:
            return f"Maximum {self.max_batch_size} memories allowed per batch operation"
        return None

    def _validate_items(self, items: List[CreateMemoryRequest]) -> Dict[int, BatchItemError]:
        invalid: Dict[int, BatchItemError] = {}
        for index, item in enumerate(items):
            validation = self.validator.validate_create(item)
            if not validation.is_valid:
                invalid[index] = BatchItemError(
                    item_index=index,
                    error_message="Validation failed",
                    validation_errors=validation.errors,
                    item_data=item.model_dump()
                )
        return invalid

    def _build_record(self, index: int, item: CreateMemoryRequest) -> Tuple[Optional[MemoryRecord], Optional[BatchItemError]]:
        try:
            return MemoryRecord.from_request(item), None
        except (ValueError, TypeError) as e:
            return None, BatchItemError(item_index=index, error_message=str(e), item_data=item.model_dump())

    def _apply_update(self, index: int, record: MemoryRecord, update: UpdateMemoryRequest,
                      now: datetime) -> Optional[BatchItemError]:
        validation = self.validator.validate_update(update)
        if not validation.is_valid:
            return BatchItemError(
                item_index=index,
                error_message="Validation failed",
                validation_errors=validation.errors,
                item_data=update.model_dump(exclude_none=True)
            )
        try:
            record.apply_update(update, now)
        except (ValueError, TypeError) as e:
            return BatchItemError(item_index=index, error_message=str(e), item_data=update.model_dump(exclude_none=True))
        return None

    def _begin(self, result: BatchOperationResult, operation: str) -> StoreTransaction:
        try:
            return self.store.begin()
        except Exception as e:
            result.mark_failed_completely()
            if not result.errors:
                result.errors.append(BatchItemError(item_index=-1, error_message=f"Batch operation failed: {e}"))
            logger.log_batch_rolled_back(operation, result.batch_id, str(e))
            raise BatchTransactionError(f"Batch {operation} failed: {e}", result) from e

    def _abandon(self, tx: StoreTransaction, result: BatchOperationResult, outcome: "_Outcome", operation: str):
        """Roll back after an abort or cancellation decided inside the item loop."""
        tx.rollback()
        processed = result.success_count + result.failure_count
        if outcome is _Outcome.CANCELLED:
            result.mark_failed_completely(BatchState.CANCELLED)
            logger.log_batch_cancelled(operation, result.batch_id, processed)
            raise BatchCancelledError(f"Batch {result.batch_id} was cancelled after {processed} items", result)

        result.mark_failed_completely(BatchState.ROLLED_BACK)
        logger.log_batch_rolled_back(operation, result.batch_id, "item failure with continue_on_error disabled")

    def _fail_transaction(self, tx: StoreTransaction, result: BatchOperationResult, error: Exception, operation: str):
        try:
            tx.rollback()
        finally:
            result.mark_failed_completely()
            if not result.errors:
                result.errors.append(BatchItemError(item_index=-1, error_message=f"Batch operation failed: {error}"))
            logger.log_batch_rolled_back(operation, result.batch_id, str(error))
        raise BatchTransactionError(f"Batch {operation} failed: {error}", result) from error

    def _report_progress(self, batch_id: str, processed: int, total: int, status: str,
                         callback: Optional[ProgressCallback], tracked: bool) -> None:
        info = self.tracker.update(batch_id, processed, status) if tracked else None
        if info is None:
            info = BatchProgressInfo(
                batch_id=batch_id,
                processed_count=processed,
                total_count=total,
                progress_percentage=compute_percentage(processed, total),
                status=status
            )
        logger.log_progress(batch_id, processed, total, info.progress_percentage)

        if callback is not None:
            try:
                callback(info)
            except Exception as e:
                # Progress reporting should never break the batch
                logger.warning(f"Progress callback failed for batch {batch_id}: {e}")

    def _finish(self, result: BatchOperationResult, started: float, operation: str, tracked: bool) -> None:
        elapsed = time.monotonic() - started
        result.processing_time = timedelta(seconds=elapsed)
        result.completed_at = datetime.now(timezone.utc)
        if tracked:
            self.tracker.remove(result.batch_id)
        if result.state is BatchState.COMPLETED:
            logger.log_batch_completed(operation, result.batch_id, result.success_count,
                                       result.failure_count, elapsed * 1000)
        elif result.state is BatchState.REJECTED:
            logger.log_operation(f"batch.{operation}", "rejected", {
                "batch_id": result.batch_id,
                "error_count": len(result.errors)
            }, level=logging.WARNING)
