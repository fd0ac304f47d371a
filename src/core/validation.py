"""
Record validation - structural and business rules for memory payloads.

Every check accumulates into a ValidationResult so that one call reports
problems on several fields at once.
"""

import json
import math
import numbers
import re
from typing import Any, Dict, List, Optional

import numpy as np

from .config import (
    MAX_EMBEDDING_DIMENSION,
    MAX_METADATA_ENTRIES,
    MAX_METADATA_KEY_LENGTH,
    MAX_METADATA_VALUE_LENGTH,
    ValidationOptions,
    get_validation_options,
)
from .schema import MemoryType

PROJECT_ID_PATTERN = re.compile(r"[A-Za-z0-9._-]+")
METADATA_KEY_PATTERN = re.compile(r"[A-Za-z0-9._:-]+")
# Embeddings are persisted as float32
FLOAT32_MAX = float(np.finfo(np.float32).max)


class MemoryValidationError(Exception):
    """Raised when a single memory payload fails validation."""

    def __init__(self, validation_errors: Dict[str, List[str]]):
        self.validation_errors = validation_errors or {}
        fields = ", ".join(self.validation_errors) or "unknown"
        super().__init__(f"Memory validation failed for: {fields}")


class ValidationResult:
    """Field name -> ordered error messages. Valid iff there are no errors."""

    def __init__(self):
        self._errors: Dict[str, List[str]] = {}

    @property
    def is_valid(self) -> bool:
        return not self._errors

    @property
    def errors(self) -> Dict[str, List[str]]:
        return {name: list(messages) for name, messages in self._errors.items()}

    def add_error(self, field: str, message: str) -> None:
        self._errors.setdefault(field, []).append(message)

    def merge(self, other: "ValidationResult", prefix: str = "") -> None:
        for name, messages in other._errors.items():
            for message in messages:
                self.add_error(name, f"{prefix}{message}")

    def get_all_errors(self) -> List[str]:
        return [message for messages in self._errors.values() for message in messages]

    def get_errors_for(self, field: str) -> List[str]:
        return list(self._errors.get(field, []))

    def raise_if_invalid(self) -> None:
        if not self.is_valid:
            raise MemoryValidationError(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": self.errors}

    def __repr__(self) -> str:
        return f"ValidationResult(is_valid={self.is_valid}, errors={self._errors!r})"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class MemoryValidator:
    """Validates create and update payloads against ValidationOptions."""

    def __init__(self, options: Optional[ValidationOptions] = None):
        self.options = options or get_validation_options()
        self._embedding_validator = None

    def validate_create(self, request) -> ValidationResult:
        """Validate a CreateMemoryRequest."""
        result = ValidationResult()

        if request is None:
            result.add_error("memory", "Memory data cannot be null")
            return result

        self._validate_project_id(request.project_id, result)
        self._validate_content(request.content, result)
        self._validate_type(request.type, result)
        self._validate_metadata(request.metadata, result)

        if request.embedding is not None:
            self._validate_embedding(request.embedding, result)

        return result

    def validate_update(self, request) -> ValidationResult:
        """Validate only the fields present in an UpdateMemoryRequest."""
        result = ValidationResult()

        if request is None:
            result.add_error("memory", "Memory data cannot be null")
            return result

        if request.content:
            self._validate_content(request.content, result)

        if request.type is not None:
            self._validate_type(request.type, result)

        if request.metadata is not None:
            self._validate_metadata(request.metadata, result)

        if request.embedding is not None:
            self._validate_embedding(request.embedding, result)

        return result

    def validate_embedding_basic(self, embedding) -> ValidationResult:
        """Shape and finiteness checks only; model rules live in EmbeddingValidator."""
        result = ValidationResult()
        self._check_embedding_basic(embedding, result)
        return result

    def _validate_project_id(self, project_id: Optional[str], result: ValidationResult):
        if _is_blank(project_id):
            result.add_error("project_id", "project_id is required")
            return

        max_length = self.options.max_project_id_length
        if len(project_id) > max_length:
            result.add_error("project_id", f"project_id cannot exceed {max_length} characters")

        if not PROJECT_ID_PATTERN.fullmatch(project_id):
            result.add_error(
                "project_id",
                "project_id contains invalid characters. Only letters, numbers, hyphens, underscores, and dots are allowed"
            )

    def _validate_content(self, content: Optional[str], result: ValidationResult):
        if _is_blank(content):
            result.add_error("content", "content is required")
            return

        max_chars = self.options.max_content_chars
        if len(content) > max_chars:
            result.add_error("content", f"content cannot exceed {max_chars} characters ({len(content)} provided)")

        content_bytes = len(content.encode("utf-8"))
        if content_bytes > self.options.max_content_bytes:
            result.add_error(
                "content",
                f"content cannot exceed {self.options.max_content_size_kb}KB ({content_bytes} bytes provided)"
            )

        if self.options.validate_suspicious_content and self._contains_suspicious_content(content):
            result.add_error("content", "content contains potentially harmful patterns")

    def _contains_suspicious_content(self, content: str) -> bool:
        lowered = content.lower()
        return any(pattern.lower() in lowered for pattern in self.options.suspicious_patterns)

    def _validate_type(self, memory_type, result: ValidationResult):
        if memory_type is None:
            result.add_error("type", "type is required")
            return
        try:
            MemoryType(memory_type)
        except ValueError:
            result.add_error("type", f"Invalid memory type: {memory_type}. Must be one of: {MemoryType.values()}")

    def _validate_metadata(self, metadata, result: ValidationResult):
        if metadata is None:
            return

        if not isinstance(metadata, dict):
            result.add_error("metadata", "metadata must be a mapping of string keys to values")
            return

        if len(metadata) > MAX_METADATA_ENTRIES:
            result.add_error("metadata", f"metadata cannot have more than {MAX_METADATA_ENTRIES} entries ({len(metadata)} provided)")

        try:
            serialized = json.dumps(metadata, allow_nan=False)
        except (TypeError, ValueError):
            # Per-value checks below name the offending key
            serialized = None

        if serialized is not None:
            metadata_bytes = len(serialized.encode("utf-8"))
            if metadata_bytes > self.options.max_metadata_bytes:
                result.add_error(
                    "metadata",
                    f"metadata cannot exceed {self.options.max_metadata_size_kb}KB ({metadata_bytes} bytes provided)"
                )

        for key, value in metadata.items():
            if not isinstance(key, str) or not key.strip():
                result.add_error("metadata", "metadata keys cannot be null or empty")
                continue
            if len(key) > MAX_METADATA_KEY_LENGTH:
                result.add_error("metadata", f"metadata key '{key[:20]}...' exceeds {MAX_METADATA_KEY_LENGTH} character limit")
            elif not METADATA_KEY_PATTERN.fullmatch(key):
                result.add_error("metadata", f"metadata key '{key}' contains invalid characters")

            if value is None:
                continue

            if isinstance(value, str) and len(value) > MAX_METADATA_VALUE_LENGTH:
                result.add_error("metadata", f"metadata value for key '{key}' exceeds {MAX_METADATA_VALUE_LENGTH} character limit")

            try:
                json.loads(json.dumps(value, allow_nan=False))
            except (TypeError, ValueError):
                result.add_error("metadata", f"metadata value for key '{key}' is not JSON serializable")

    def _validate_embedding(self, embedding, result: ValidationResult):
        basic_ok = self._check_embedding_basic(embedding, result)
        if basic_ok and self.options.validate_embedding_quality:
            quality = self.embedding_validator.validate_embedding(embedding)
            result.merge(quality)

    def _check_embedding_basic(self, embedding, result: ValidationResult) -> bool:
        if embedding is None or len(embedding) == 0:
            result.add_error("embedding", "embedding cannot be null or empty when provided")
            return False

        valid = True
        for index, value in enumerate(embedding):
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                result.add_error("embedding", f"Value at index {index} is not a number")
                valid = False
                break
            if math.isnan(value) or math.isinf(value):
                result.add_error("embedding", "embedding contains invalid values (NaN or Infinity)")
                valid = False
                break
            if abs(value) > FLOAT32_MAX:
                result.add_error("embedding", f"Value at index {index} is too large to store as a 32-bit float")
                valid = False
                break

        if len(embedding) > MAX_EMBEDDING_DIMENSION:
            result.add_error(
                "embedding",
                f"embedding dimension must be between 1 and {MAX_EMBEDDING_DIMENSION} (provided: {len(embedding)})"
            )
            valid = False

        return valid

    @property
    def embedding_validator(self):
        if self._embedding_validator is None:
            from src.vector.embedding_validator import EmbeddingValidator
            self._embedding_validator = EmbeddingValidator.from_options(self.options)
        return self._embedding_validator
